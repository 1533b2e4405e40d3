# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
WSGI entry point, e.g. ``gunicorn escrow_api.wsgi:app``.
"""

import os

from escrow_api.app import create_app

app = create_app()

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', '5000')),
        debug=app.config['DEBUG']
    )
