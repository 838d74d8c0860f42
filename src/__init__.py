"""
Content Engine

Budget-aware async pipeline for AI content production:
1. Picks the cheapest adequate model per task
2. Records every AI dollar in a durable ledger
3. Gates calls and raises alerts against daily/monthly budgets
4. Reuses near-duplicate content before paying for generation
5. Runs generation, translation, media, linking and publishing jobs
   with per-kind retry, timeout and uniqueness policies
"""

__version__ = "0.1.0"
