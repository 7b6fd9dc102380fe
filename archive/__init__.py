"""
Exam Archive
============
Course / exam-question archive backed by SQLite and a local upload folder.

Architecture:
    - Database: Versioned schema + row-level queries (sqlite3)
    - Grouping: Orders question pages and groups solution rows into
      multi-part alternative answers
    - Tags: Resolves submitted tag input and reconciles question links
    - CRUD: Service layer coordinating SQLite + uploaded files
    - Server: Flask JSON API consumed by the web UI
    - Export: Static JSON snapshots and printable PDF output

Version: 1.0.0
"""

__version__ = "1.0.0"
