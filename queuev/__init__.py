"""QUEUEV: queue scheduling with same-day QR check-in.

The package is split the same way the running system is:
- a queue-creation wizard (`draft`, `wizard`) that builds a queue locally and
  submits it to the document store (`persistence`, `invitations`)
- a registration desk service (MQTT request/response) that checks people in
- live notifications and the management listing (`notifications`, `access`)
- a Tkinter notification panel

See `python -m queuev.app -h` for how to run the pieces.
"""
