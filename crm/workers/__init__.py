"""
Workers executaveis via `python -m crm.workers <worker>`.
"""
