"""Spaces app package.

Holds the bookable space and its availability configuration. Listing
management lives elsewhere; the booking core only reads these rows.
"""
