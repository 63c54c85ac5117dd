"""Import every model so Base.metadata knows about all tables."""
from sitecatalog.models.website import Website
from sitecatalog.models.contact import WebsiteContact
from sitecatalog.models.qualification import QualificationMark
from sitecatalog.models.sync_run import SyncRun
from sitecatalog.models.offering import OfferingRelationship

__all__ = [
    'Website',
    'WebsiteContact',
    'QualificationMark',
    'SyncRun',
    'OfferingRelationship',
]
