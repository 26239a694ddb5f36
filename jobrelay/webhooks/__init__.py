"""Worker callbacks.

Workers report job outcomes to ``/callbacks/{provider}``. Each callback is
authenticated, checked against the job's terminal state and then relayed to
subscribers.
"""
