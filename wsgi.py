"""WSGI entry point (gunicorn wsgi:app)."""
import os

from studyflow import create_app

app = create_app(os.getenv('FLASK_ENV', 'development'))

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
