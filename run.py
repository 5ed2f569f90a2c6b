#!/usr/bin/env python3
"""Development server runner (status API with the backup scheduler in-process)"""
import os
from dbshield import create_app

if __name__ == '__main__':
    # Use development config for local testing
    app = create_app('development', {'SCHEDULER_AUTOSTART': True})

    # Run development server
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=True)
