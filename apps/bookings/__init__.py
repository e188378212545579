"""Bookings app package.

Hourly booking requests for spaces: slot availability, conflict
detection and the status lifecycle (pending, selected, approved,
rejected, cancelled). State changes run inside one database transaction
with the space row locked, so two requests for the same slot are
serialised.
"""
