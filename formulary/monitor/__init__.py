"""Run monitor — read-only projection over the run journal.

The monitor never keeps state of its own.  Every call re-reads the journal.

Modules
-------
projection
    ``RunProjection`` folds journal entries into frozen ``RunSnapshot``
    models, one per pipeline run.
renderer
    ``RunRenderer`` turns snapshots and installation records into Rich
    tables for ``formulary history`` and ``formulary status``.
"""
