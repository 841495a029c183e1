from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Project(TimestampMixin, db.Model):
    __tablename__ = 'hira_projects'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.String(20), nullable=True)
    facilitator = db.Column(db.JSON, nullable=False, default=dict)
    attendees = db.Column(db.JSON, nullable=False, default=list)
    operational_desc = db.Column(db.Text, nullable=True)
    operational_files = db.Column(db.JSON, nullable=False, default=list)
    matrix_type = db.Column(db.String(20), nullable=False, default='ICAO')

    events = db.relationship('Event', backref='project', lazy=True,
                             cascade='all, delete-orphan', order_by='Event.id')

    def to_dict(self):
        return {
            'project_id': self.project_id,
            'title': self.title,
            'date': self.date,
            'facilitator': dict(self.facilitator or {}),
            'attendees': list(self.attendees or []),
            'operational_desc': self.operational_desc or '',
            'operational_files': list(self.operational_files or []),
            'matrix_type': self.matrix_type,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Event(TimestampMixin, db.Model):
    __tablename__ = 'hira_events'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('hira_projects.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    hazards = db.relationship('Hazard', backref='event', lazy=True,
                              cascade='all, delete-orphan', order_by='Hazard.id')

    def to_dict(self):
        return {'id': self.id, 'name': self.name,
                'hazards': [hazard.to_dict() for hazard in self.hazards]}


class Hazard(TimestampMixin, db.Model):
    __tablename__ = 'hira_hazards'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('hira_events.id'), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)

    consequences = db.relationship('Consequence', backref='hazard', lazy=True,
                                   cascade='all, delete-orphan', order_by='Consequence.id')

    def to_dict(self):
        return {'id': self.id, 'description': self.description,
                'consequences': [consequence.to_dict() for consequence in self.consequences]}


class Consequence(TimestampMixin, db.Model):
    __tablename__ = 'hira_consequences'

    id = db.Column(db.Integer, primary_key=True)
    hazard_id = db.Column(db.Integer, db.ForeignKey('hira_hazards.id'), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    current_controls = db.Column(db.Text, nullable=True)

    assessment = db.relationship('Assessment', backref='consequence', uselist=False,
                                 cascade='all, delete-orphan')

    def to_dict(self):
        return {'id': self.id, 'description': self.description,
                'current_controls': self.current_controls or ''}


class Assessment(TimestampMixin, db.Model):
    __tablename__ = 'hira_risk_assessments'

    id = db.Column(db.Integer, primary_key=True)
    consequence_id = db.Column(db.Integer, db.ForeignKey('hira_consequences.id'),
                               unique=True, nullable=False)
    matrix_type = db.Column(db.String(20), nullable=False)
    probability = db.Column(db.Integer, nullable=True)
    severity = db.Column(db.String(1), nullable=True)
    likelihood = db.Column(db.Integer, nullable=True)
    impact = db.Column(db.Integer, nullable=True)
    tolerability = db.Column(db.String(20), nullable=True)

    control = db.relationship('Control', backref='assessment', uselist=False,
                              cascade='all, delete-orphan')

    def to_dict(self):
        """Assessment row with its consequence, hazard and event denormalised."""
        consequence = self.consequence
        hazard = consequence.hazard
        event = hazard.event
        return {
            'id': self.id,
            'assessment_id': self.id,
            'consequence_id': consequence.id,
            'consequence': consequence.description,
            'current_controls': consequence.current_controls or '',
            'hazard_id': hazard.id,
            'hazard': hazard.description,
            'event_id': event.id,
            'event': event.name,
            'matrix_type': self.matrix_type,
            'probability': self.probability,
            'severity': self.severity,
            'likelihood': self.likelihood,
            'impact': self.impact,
            'tolerability': self.tolerability,
        }


class Control(TimestampMixin, db.Model):
    __tablename__ = 'hira_risk_controls'

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey('hira_risk_assessments.id'),
                              unique=True, nullable=False)
    additional_mitigation = db.Column(db.Text, nullable=True)
    risk_owner = db.Column(db.String(150), nullable=True)
    target_date = db.Column(db.Date, nullable=True)
    date_implemented = db.Column(db.Date, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'assessment_id': self.assessment_id,
            'consequence_id': self.assessment.consequence_id,
            'additional_mitigation': self.additional_mitigation or '',
            'risk_owner': self.risk_owner or '',
            'target_date': self.target_date.isoformat() if self.target_date else None,
            'date_implemented': self.date_implemented.isoformat() if self.date_implemented else None,
        }
