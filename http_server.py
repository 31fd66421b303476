#!/usr/bin/env python3
"""
replaylist HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from replaylist.crosscutting.config import setup_config
from replaylist.crosscutting.logging import setup_logging
from replaylist.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    settings = setup_config()
    setup_logging(settings.log_level)
    server = HTTPServer(
        host=os.getenv('HOST', 'localhost'),
        port=int(os.getenv('PORT', '8080')),
        debug=os.getenv('FLASK_DEBUG') == '1',
        settings=settings,
    )
    server.run()


if __name__ == '__main__':
    main()
