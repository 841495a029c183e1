import os

from hira import create_app
from hira.models import db

app = create_app()

# =============================================================================
# Main Execution
# =============================================================================
if __name__ == '__main__':
    with app.app_context():
        db.create_all()

    app.run(debug=os.environ.get('FLASK_DEBUG', '1') == '1',
            port=int(os.environ.get('PORT', 5001)))
