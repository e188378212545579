"""Django project configuration: settings, URL routing, WSGI and ASGI entry points."""
