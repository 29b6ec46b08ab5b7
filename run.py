#!/usr/bin/env python3
"""Development server runner"""
import os
from dirvault import create_app

if __name__ == '__main__':
    # The server process owns the recurring backup schedule
    os.environ.setdefault('DIRVAULT_SCHEDULER', 'true')

    # Use development config for local testing
    app = create_app('development')

    # Run development server
    port = int(os.environ.get('PORT', 5000))
    app.run(host='127.0.0.1', port=port, debug=True)
