"""Deployline monitor — Rich rendering of results, transitions and history.

Nothing here holds state: every view is built from a ``PipelineResult``,
a list of ``TransitionEvent``s, or rows read back from the Run Ledger.
"""
