"""Entry point module for WSGI.

This is used when running the app using a WSGI server such as uWSGI or
gunicorn, e.g. `gunicorn credservice.wsgi_entrypoint:app`
"""
from credservice.app import init_app

app = init_app()

if __name__ == "__main__":
    settings = app.extensions["credservice"].settings
    app.run(host="0.0.0.0", port=settings.port)  # noqa: S104
