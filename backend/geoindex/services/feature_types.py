from __future__ import annotations

import logging

from sqlmodel import Session

from geoindex.models.feature_type import FeatureType
from geoindex.services import search_index_events as events

logger = logging.getLogger(__name__)


def save_feature_type(session: Session, feature_type: FeatureType, **hook_kwargs) -> FeatureType:
    """Save a feature type; an existing one has its search index rebuilt first."""

    events.before_save_feature_type(session, feature_type, **hook_kwargs)
    session.add(feature_type)
    session.commit()
    session.refresh(feature_type)
    return feature_type


def delete_feature_type(session: Session, feature_type: FeatureType, **hook_kwargs) -> None:
    deleted = FeatureType(id=feature_type.id, name=feature_type.name)
    session.delete(feature_type)
    session.commit()
    logger.info("Deleted feature type %s (%s)", deleted.name, deleted.id)
    events.after_delete_feature_type(session, deleted, **hook_kwargs)
