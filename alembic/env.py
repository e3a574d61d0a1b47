from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config, pool
import os
from portal.db.session import Base

# import models
from portal.models.company import Company
from portal.models.user import User
from portal.models.agent import Agent
from portal.models.service_request import ServiceRequest
from portal.models.sub_task import SubTask
from portal.models.assignment_change_request import AssignmentChangeRequest
from portal.models.request_note import RequestNote
from portal.models.request_attachment import RequestAttachment
from portal.models.activity_log import ActivityLog
from portal.models.notification import Notification
from portal.models.insured_account import InsuredAccount

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata

def get_url():
    return os.getenv("DATABASE_URL")

def run_migrations_offline():
    context.configure(url=get_url(), target_metadata=target_metadata, literal_binds=True, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    cfg = config.get_section(config.config_ini_section)
    cfg["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(cfg, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
