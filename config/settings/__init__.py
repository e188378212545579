"""Settings package for the SpaceBook project.

``base.py`` holds the shared configuration; ``dev.py``, ``prod.py`` and
``test.py`` extend it per environment.
"""
