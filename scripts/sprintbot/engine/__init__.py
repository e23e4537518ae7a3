"""
Sprint Bot Engine: SQLite-backed task and sprint workflow.

This package is the engine core: task state machine, race-safe claim
protocol, sprint lifecycle and the automation scheduler. Rendering and
delivery of notifications belong to the chat presentation layer, which
receives domain events through a dispatcher.
"""
