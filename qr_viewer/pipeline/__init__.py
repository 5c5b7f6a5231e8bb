"""
QR Detection Pipeline

Runs after an upload is accepted:
1. Scheduler - hands the upload to a background context (in-process or Celery)
2. Processing - multi-strategy detection, then one terminal write
"""
