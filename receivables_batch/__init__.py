"""
receivables_batch -- background jobs over many seller+customer pairs.

Tasks implement the ``BatchTask`` protocol and are looked up by
``task_type`` in a ``TaskRegistry``; ``BatchExecutor`` runs one task with a
SAVEPOINT per item.
"""
