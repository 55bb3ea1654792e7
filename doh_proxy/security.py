# doh_proxy/security.py
"""PID file handling and privilege drop after the listener is bound"""

import grp
import logging
import os
import pwd

logger = logging.getLogger(__name__)


def drop_privileges(user: str, group: str):
    """Switch to user/group after the listening socket is bound"""
    if os.getuid() != 0:
        logger.info("Not running as root, skipping privilege drop")
        return

    user_info = pwd.getpwnam(user)
    group_info = grp.getgrnam(group)

    # Group first, setgid is no longer allowed once the uid changes
    os.setgid(group_info.gr_gid)
    os.setgroups([])
    os.setuid(user_info.pw_uid)

    logger.info(f"Dropped privileges to {user}:{group}")


def create_pid_file(pid_file: str):
    pid_dir = os.path.dirname(pid_file)
    if pid_dir and not os.path.exists(pid_dir):
        os.makedirs(pid_dir, mode=0o755)
        logger.info(f"Created PID directory: {pid_dir}")

    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))
    logger.info(f"PID file created: {pid_file}")


def remove_pid_file(pid_file: str):
    try:
        if os.path.exists(pid_file):
            os.unlink(pid_file)
            logger.info(f"PID file removed: {pid_file}")
    except OSError as e:
        logger.error(f"Failed to remove PID file {pid_file}: {e}")
