import argparse
import logging

from hira import create_app
from hira.models import db
from hira.services import HiraDataService

logger = logging.getLogger('hira.init_db')

SAMPLE_PROJECT = {
    'title': 'Apron operations review',
    'facilitator': {'name': 'Safety Manager', 'designation': 'SMS Lead'},
    'attendees': [{'name': 'Ramp Supervisor', 'designation': 'Ground Handling'}],
    'operational_desc': 'Turnaround of narrow-body aircraft on remote stands.',
}

SAMPLE_EVENTS = [
    {'name': 'Ground collision', 'hazards': [
        {'description': 'Vehicles operating close to parked aircraft', 'consequences': [
            {'description': 'Damage to aircraft fuselage', 'current_controls': 'Marshalling'},
        ]},
    ]},
]


def initialize_database(app, drop=True, seed=False):
    with app.app_context():
        if drop:
            logger.info('Dropping all tables')
            db.drop_all()
        db.create_all()
        logger.info('Tables created')

        if seed:
            service = HiraDataService.from_config(app.config)
            project = service.create_project(SAMPLE_PROJECT)
            service.save_events(project['project_id'], SAMPLE_EVENTS)
            logger.info('Sample project %s created', project['project_id'])

        logger.info('Database initialization complete.')


# =============================================================================
# Main Execution
# =============================================================================
if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Create the HIRA database tables.')
    parser.add_argument('--keep', action='store_true', help='keep existing tables and data')
    parser.add_argument('--seed', action='store_true', help='add a sample project')
    args = parser.parse_args()

    initialize_database(create_app(), drop=not args.keep, seed=args.seed)
