"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi seed-demo
    flask --app wsgi show-view --user demo-ana --view kanban
    gunicorn wsgi:app
"""

from worksync import create_app

app = create_app()
