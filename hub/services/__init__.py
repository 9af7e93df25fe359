"""
Hub Services
============

Backend functions over the workspace database. Every function takes a
SQLAlchemy session and the acting user id (None when not signed in).

Modules:
    - documents: documents and nodes
    - chat_threads: chat threads stored as documents
    - file_documents: uploaded files as documents
    - entity_contexts: company/person research cache
    - billing: supporter checkout (Polar, Stripe, dev)
    - analytics: roadmap activity analytics
    - gmail: Google OAuth tokens and inbox fetch
    - timelines: agent timelines, tasks, links and runs
    - exporter: Markdown / JSON / text conversation export
"""
