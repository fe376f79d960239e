"""Quota management and admission control.

Tokens and token quota limits

Tokens are small chunks of text, which can be as small as one character or as
large as one word. Every chat completion passing through the service is
measured in tokens, and OCR jobs are measured in pages and documents.

Quota limits define the number of units a caller can use in a certain
timeframe: per request, per session, per UTC day and per UTC calendar month.
Request rate limits define how often a caller can call the service at all,
depending on the tier the caller belongs to. OCR jobs are additionally
admitted through a bounded queue, so only a handful of jobs run at the same
time.

Every denial is recorded in a bounded in-memory hit log, so operators can see
which limits are being hit and by whom.

All state is held in memory of one process. Nothing survives a restart.
"""
