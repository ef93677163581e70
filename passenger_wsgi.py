# passenger_wsgi.py
import sys
import os

# Add the project directory to the Python path
sys.path.insert(0, os.path.dirname(__file__))

# DATABASE_URL and SECRET_KEY must come from the hosting environment
os.environ.setdefault('FLASK_ENV', 'production')

from app import create_app

application = create_app(os.environ['FLASK_ENV'])

if __name__ == "__main__":
    application.run(debug=False)
