"""MegaStack Backup Meta information.
   MegaStack Backup archives a server's persistent state into encrypted backups.
"""
__title__ = 'megastack_backup'
__description__ = (
   'MegaStack Backup archives server state into encrypted, '
   'cataloged backup files.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 MegaStack'
__author__ = 'MegaStack Team'
__author_email__ = 'dev@megastack.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/megastack/megastack-backup'
