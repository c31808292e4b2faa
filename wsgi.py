import os
from clinic_pos import create_app, db

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# Make sure tables exist on first boot (no shell on most free hosts)
with app.app_context():
    db.create_all()

if __name__ == "__main__":
    app.run()
