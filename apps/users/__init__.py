"""Users app package.

Defines the custom user model with the three booking roles (client,
host, agent). Use ``apps.users.models.CustomUser`` as AUTH_USER_MODEL.
"""
