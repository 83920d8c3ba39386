"""
SitePanel server entry point.

    SITEPANEL_ENV=development python run.py
"""

import eventlet
eventlet.monkey_patch()

from app import create_app  # noqa: E402
from extensions import socketio  # noqa: E402

app = create_app()

if __name__ == '__main__':
    print(f"SitePanel running on http://{app.config['HOST']}:{app.config['PORT']}")
    socketio.run(
        app,
        host=app.config['HOST'],
        port=app.config['PORT'],
        debug=app.config['DEBUG']
    )
