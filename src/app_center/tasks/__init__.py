"""App task store and orchestrator.

Why not Celery / Dramatiq / Arq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The whole engine runs on one host next to the container runtime it drives.
A task is a row in the local SQLite file; a dispatch is a task id on an
in-process ``asyncio.Queue``; the only cross-worker coordination needed is
the queued -> running claim, which a conditional UPDATE already gives us.
A broker would add an operational dependency and a second source of truth
for task state without removing any of that logic.
"""
