"""
Repositories package

Each repository encapsulates database operations for a model:
- user_repository.py
- apitoken_repository.py
- credentialvalidity_repository.py
- activitylog_repository.py

Lease and link cache rows are owned by their services
(services/lease_manager.py, services/link_cache.py), which need
single-statement upserts rather than CRUD helpers.

Usage:
    from repositories.user_repository import UserRepository
    users = UserRepository.get_all()
"""
