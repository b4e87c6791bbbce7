"""Release monitor — terminal views over finished release reports.

Modules
-------
renderer
    ``ReleaseRenderer`` turns a ``ReleaseReport`` into Rich renderables,
    including the table of failed platforms and stages.
"""
