#!/usr/bin/env python3
"""pwvault CLI - A local, offline password vault.

Single-file encrypted vault with libsodium cryptography via pynacl.
Entries are decrypted one at a time, only when shown.
"""

import argparse
import getpass
import logging
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from . import __version__, config
from .audit import RESULT_OK, AuditLogger
from .errors import AlreadyExists, VaultError, describe
from .passgen import gen_password
from .secure import SecretBytes
from .storage import FILE_MODE, atomic_write, ensure_private_directory
from .vault import create_vault, open_vault

logger = logging.getLogger(__name__)

# Commands that never touch a vault are not audited
UNAUDITED_COMMANDS = {'gen', 'log'}


class CommandError(Exception):
    """A user-facing failure that is not a vault error (bad input, mismatch)."""


def get_vault_path(args_vault=None):
    """Get vault path from args, PWVAULT_PATH or default."""
    return config.get_vault_path(args_vault)


def get_password(prompt="Enter master password: ", env_var=config.ENV_PASSWORD):
    """Get password from environment variable or prompt.

    Checks PWVAULT_PASSWORD first for automation/testing.
    Falls back to interactive getpass prompt if not set.

    Security note: Using PWVAULT_PASSWORD in environment variables is less secure
    as it may be visible in process lists. Only use in isolated environments.
    """
    env_password = os.environ.get(env_var)
    if env_password:
        return env_password
    return getpass.getpass(prompt)


def get_new_password(*env_vars):
    """Get a new master password.

    The first of ``env_vars`` that is set wins (default PWVAULT_NEW_PASSWORD).
    Otherwise the password is prompted for twice and must match.
    """
    for env_var in env_vars or (config.ENV_NEW_PASSWORD,):
        env_password = os.environ.get(env_var)
        if env_password:
            return env_password

    password = getpass.getpass('Enter new master password: ')
    repeated = getpass.getpass('Confirm new master password: ')

    if password != repeated:
        raise CommandError('Passwords do not match')
    if not password:
        raise CommandError('Master password must not be empty')
    return password


def read_line(prompt):
    """Read one trimmed line from stdin."""
    return input(prompt).strip()


def prompt_with_default(label, current):
    """Prompt showing the current value; Enter keeps it."""
    value = read_line(f"{label} [{current}]: ")
    return value or current


def confirm(prompt):
    return read_line(f"{prompt} [y/N]: ") in ('y', 'Y')


def _clipboard_command():
    """Detect the clipboard tool for this environment, or None."""
    if os.path.exists("/proc/version"):
        with open("/proc/version") as f:
            kernel = f.read().lower()
        if "microsoft" in kernel or "wsl" in kernel:
            return ["clip.exe"]
        # Check for Wayland
        if os.environ.get("WAYLAND_DISPLAY"):
            return ["wl-copy"]
        return ["xclip", "-selection", "clipboard"]
    if sys.platform == "darwin":
        return ["pbcopy"]
    if sys.platform == "win32":
        return ["clip"]
    return None


def copy_to_clipboard(data):
    """Copy bytes to the clipboard. Returns True on success."""
    cmd = _clipboard_command()
    if cmd is None:
        return False

    try:
        proc = subprocess.run(cmd, input=data, capture_output=True)
    except FileNotFoundError:
        logger.debug("Clipboard tool %s not found", cmd[0])
        return False
    return proc.returncode == 0


def clear_clipboard_after(timeout):
    """Wait ``timeout`` seconds in the foreground, then clear the clipboard."""
    if timeout <= 0:
        print("(copied to clipboard)")
        return

    print(f"(copied to clipboard, clearing in {timeout}s - Ctrl-C clears now)")
    try:
        time.sleep(timeout)
    except KeyboardInterrupt:
        pass
    finally:
        copy_to_clipboard(b"")
    print("(clipboard cleared)")


def copy_secret(secret, timeout):
    """Copy a secret to the clipboard, falling back to stdout."""
    with secret.reveal() as raw:
        copied = copy_to_clipboard(raw)
    if copied:
        clear_clipboard_after(timeout)
    else:
        print(f"Password: {secret.decode()}")
        print("(No clipboard tool available - printing to stdout)", file=sys.stderr)


def unlock(args, writable=True):
    """Open the vault named by ``args`` with the master password."""
    vault_path = get_vault_path(args.vault)

    if not vault_path.exists():
        raise CommandError(f"Vault not found: {vault_path}")

    password = get_password()
    return open_vault(vault_path, password, writable=writable)


def format_time(moment):
    return moment.astimezone().strftime('%Y-%m-%d %H:%M')


# ============================================================================
# Commands
# ============================================================================

def cmd_init(args):
    """Create a new vault file."""
    vault_path = get_vault_path(args.vault)

    if vault_path.exists():
        raise CommandError(f"Vault already exists: {vault_path}")

    params = config.get_kdf_params(args.kdf)
    password = get_new_password(config.ENV_NEW_PASSWORD, config.ENV_PASSWORD)

    print("Deriving key (this can take a few seconds)...", file=sys.stderr)
    with create_vault(vault_path, password, params):
        pass

    print(f"Vault created at {vault_path}")
    return str(vault_path)


def cmd_list(args):
    """List entries sorted by title."""
    with unlock(args, writable=False) as vault:
        summaries = vault.sorted()

    if not summaries:
        print("(vault is empty)")
        return None

    print(f"{'#':>3}  {'ID':<12}  {'Title':<28}  {'Username':<24}  Updated")
    for position, summary in enumerate(summaries, 1):
        print(
            f"{position:>3}  {summary.id[:12]:<12}  {summary.title[:28]:<28}  "
            f"{summary.username[:24]:<24}  {format_time(summary.modified)}"
        )
    return None


def cmd_show(args):
    """Decrypt and display one entry."""
    timeout = config.get_clip_timeout(args.timeout)

    with unlock(args, writable=False) as vault:
        entry_id = vault.resolve(args.selector)
        summary = vault.get(entry_id)
        with vault.show(entry_id) as secret:
            print(f"ID:       {summary.id}")
            print(f"Title:    {summary.title}")
            print(f"Username: {summary.username}")
            if args.clip:
                copy_secret(secret.password, timeout)
            else:
                print(f"Password: {secret.password.decode()}")
            if len(secret.notes):
                print(f"Notes:    {secret.notes.decode()}")
            print(f"Created:  {format_time(summary.created)}")
            print(f"Updated:  {format_time(summary.modified)}")
    return entry_id


def cmd_add(args):
    """Add a new entry."""
    title = args.title or read_line("Title: ")
    if not title:
        raise CommandError("Title must not be empty")
    username = args.username if args.username is not None else read_line("Username: ")

    if args.generate:
        password = gen_password(args.length)
    else:
        entered = getpass.getpass("Password (hidden): ")
        if not entered:
            raise CommandError("Password must not be empty (use --generate for a random one)")
        password = SecretBytes.from_text(entered)

    notes = args.notes if args.notes is not None else read_line("Notes (optional): ")

    with password, unlock(args) as vault:
        entry_id = vault.add(title, username, password, notes)

    print(f"Added {entry_id}")
    return entry_id


def cmd_edit(args):
    """Edit an entry. Without field flags, prompts for every field."""
    interactive = all(
        value is None for value in (args.title, args.username, args.notes)
    ) and not (args.password or args.generate)

    with unlock(args) as vault:
        entry_id = vault.resolve(args.selector)
        summary = vault.get(entry_id)

        title, username, notes, password = args.title, args.username, args.notes, None
        if interactive:
            title = prompt_with_default("Title", summary.title)
            username = prompt_with_default("Username", summary.username)
            entered = getpass.getpass("Password (hidden) [Enter keeps current]: ")
            if entered:
                password = SecretBytes.from_text(entered)
            notes = read_line("Notes [Enter keeps current, '-' clears]: ") or None
            if notes == '-':
                notes = ""
        elif args.generate:
            password = gen_password(args.length)
        elif args.password:
            entered = getpass.getpass("New password (hidden): ")
            if not entered:
                raise CommandError("Password must not be empty")
            password = SecretBytes.from_text(entered)

        try:
            vault.edit(entry_id, title=title, username=username, password=password, notes=notes)
        finally:
            if password is not None:
                password.wipe()

    print(f"Edited {entry_id}")
    return entry_id


def cmd_delete(args):
    """Delete an entry."""
    with unlock(args) as vault:
        entry_id = vault.resolve(args.selector)
        summary = vault.get(entry_id)

        if not args.yes and not confirm(f"Delete '{summary.title}' ({entry_id[:12]})?"):
            print("Aborted.")
            return entry_id

        vault.delete(entry_id)

    print(f"Deleted {entry_id}")
    return entry_id


def cmd_search(args):
    """Search entries by title and username (and notes with --deep)."""
    with unlock(args, writable=False) as vault:
        matches = [vault.get(entry_id) for entry_id in vault.search(args.term, deep=args.deep)]

    matches.sort(key=lambda s: s.modified, reverse=True)
    if args.limit:
        matches = matches[:args.limit]

    if not matches:
        print("No matches.")
        return None

    for summary in matches:
        print(f"{summary.id[:12]}  {summary.title}  ({summary.username})")
    return None


def cmd_change_master(args):
    """Change the master password."""
    params = config.get_kdf_params(args.kdf) if args.kdf else None

    with unlock(args) as vault:
        new_password = get_new_password(config.ENV_NEW_PASSWORD)
        print("Deriving key (this can take a few seconds)...", file=sys.stderr)
        vault.change_master(new_password, params)

    print("Master password changed.")
    return None


def backup_vault(vault, dest, overwrite=False):
    """Write the vault's committed image to ``dest``.

    Raises:
        AlreadyExists: ``dest`` exists and ``overwrite`` is not set
        CommandError: ``dest`` is the vault itself

    """
    dest = Path(dest).expanduser()
    if dest.resolve() == vault.path.resolve():
        raise CommandError("Backup destination is the vault itself")
    if dest.exists() and not overwrite:
        raise AlreadyExists(f"{dest} exists (use --overwrite to replace it)")

    ensure_private_directory(dest.parent)
    atomic_write(dest, vault.export_snapshot(), FILE_MODE)
    return dest


def cmd_backup(args):
    """Copy the encrypted vault to another file."""
    with unlock(args, writable=False) as vault:
        dest = backup_vault(vault, args.dest, args.overwrite)

    print(f"Backup written to {dest}")
    return str(dest)


def cmd_gen(args):
    """Generate a random password."""
    try:
        password = gen_password(
            args.length,
            upper=not args.no_upper,
            lower=not args.no_lower,
            digits=not args.no_digits,
            specials=not args.no_specials,
        )
    except ValueError as e:
        raise CommandError(str(e)) from None

    with password:
        if args.clip:
            copy_secret(password, config.get_clip_timeout(args.timeout))
        else:
            print(password.decode())
    return None


def cmd_log(args):
    """Show the most recent audit log lines, or list the log files."""
    if args.lines < 1:
        raise CommandError('--lines must be at least 1')

    audit = get_audit_logger()
    if audit is None:
        raise CommandError('Audit log is disabled or unavailable')

    if args.files:
        for path in audit.get_log_files():
            print(path)
        return None

    for line in audit.read_recent(args.lines):
        print(line.rstrip('\n'))
    return None


# ============================================================================
# Entry point
# ============================================================================

def get_audit_logger():
    """Audit logger from configuration, or None if disabled or unusable."""
    log_path = config.get_audit_log_path()
    if log_path is None:
        return None
    try:
        return AuditLogger(log_path, config.get_audit_retention_days())
    except (OSError, VaultError) as e:
        logger.warning("Audit log disabled: %s", e)
        return None


def audit_event(audit, action, result, target, reason=None):
    if audit is None:
        return
    try:
        audit.log_event(action, result, target, reason)
    except OSError as e:
        logger.warning("Could not write audit log: %s", e)


def run_command(handler, args) -> int:
    """Run one command handler, audit it and map failures to an exit code."""
    audit = None if args.command in UNAUDITED_COMMANDS else get_audit_logger()
    action = args.command.upper().replace('-', '_')
    fallback_target = str(get_vault_path(args.vault))

    try:
        target: Optional[str] = handler(args)
    except VaultError as e:
        audit_event(audit, action, e.code, fallback_target, describe(e))
        print(describe(e), file=sys.stderr)
        return 1
    except (CommandError, ValueError) as e:
        audit_event(audit, action, "REJECTED", fallback_target, str(e))
        print(str(e), file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nAborted.", file=sys.stderr)
        return 130

    audit_event(audit, action, RESULT_OK, target or fallback_target)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog='pwvault',
        description="pwvault - Local, offline password vault"
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {__version__}"
    )
    # Global options
    parser.add_argument('--vault', help='Path to vault file (default: ~/.pwvault/vault.pwv)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log diagnostics to stderr')

    # Per-command --vault must not reset a global --vault to None
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--vault', default=argparse.SUPPRESS, help='Path to vault file')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # init
    init_parser = subparsers.add_parser('init', parents=[common], help='Create a new vault')
    init_parser.add_argument('--kdf', help='KDF profile: interactive, moderate, sensitive, default')

    # list
    subparsers.add_parser('list', parents=[common], help='List entries')

    # show
    show_parser = subparsers.add_parser('show', parents=[common], help='Show an entry')
    show_parser.add_argument('selector', help='List index or id prefix (4+ chars)')
    show_parser.add_argument('--clip', action='store_true', help='Copy password to clipboard instead of printing')
    show_parser.add_argument('--timeout', type=int, help='Seconds before the clipboard is cleared (0 = never)')

    # add
    add_parser = subparsers.add_parser('add', parents=[common], help='Add an entry')
    add_parser.add_argument('--title', help='Entry title')
    add_parser.add_argument('--username', help='Username')
    add_parser.add_argument('--notes', help='Notes (stored encrypted)')
    add_parser.add_argument('--generate', action='store_true', help='Generate a random password')
    add_parser.add_argument('--len', dest='length', type=int, default=config.DEFAULT_PASSWORD_LENGTH,
                            help='Generated password length')

    # edit
    edit_parser = subparsers.add_parser('edit', parents=[common], help='Edit an entry')
    edit_parser.add_argument('selector', help='List index or id prefix (4+ chars)')
    edit_parser.add_argument('--title', help='New title')
    edit_parser.add_argument('--username', help='New username')
    edit_parser.add_argument('--notes', help='New notes')
    edit_parser.add_argument('--password', action='store_true', help='Prompt for a new password')
    edit_parser.add_argument('--generate', action='store_true', help='Replace the password with a generated one')
    edit_parser.add_argument('--len', dest='length', type=int, default=config.DEFAULT_PASSWORD_LENGTH,
                             help='Generated password length')

    # delete
    delete_parser = subparsers.add_parser('delete', parents=[common], help='Delete an entry')
    delete_parser.add_argument('selector', help='List index or id prefix (4+ chars)')
    delete_parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')

    # search
    search_parser = subparsers.add_parser('search', parents=[common], help='Search entries')
    search_parser.add_argument('term', help='Search term')
    search_parser.add_argument('--deep', action='store_true', help='Also search encrypted notes')
    search_parser.add_argument('--limit', type=int, help='Maximum number of results')

    # change-master
    change_parser = subparsers.add_parser('change-master', parents=[common], help='Change the master password')
    change_parser.add_argument('--kdf', help='Switch to a stronger KDF profile')

    # backup
    backup_parser = subparsers.add_parser('backup', parents=[common], help='Copy the encrypted vault')
    backup_parser.add_argument('dest', help='Destination file')
    backup_parser.add_argument('--overwrite', action='store_true', help='Replace an existing destination')

    # gen
    gen_parser = subparsers.add_parser('gen', help='Generate a random password')
    gen_parser.add_argument('--len', dest='length', type=int, default=config.DEFAULT_PASSWORD_LENGTH,
                            help='Password length')
    gen_parser.add_argument('--no-upper', action='store_true', help='Exclude uppercase letters')
    gen_parser.add_argument('--no-lower', action='store_true', help='Exclude lowercase letters')
    gen_parser.add_argument('--no-digits', action='store_true', help='Exclude digits')
    gen_parser.add_argument('--no-specials', action='store_true', help='Exclude special characters')
    gen_parser.add_argument('--clip', action='store_true', help='Copy to clipboard instead of printing')
    gen_parser.add_argument('--timeout', type=int, help='Seconds before the clipboard is cleared (0 = never)')

    # log
    log_parser = subparsers.add_parser('log', help='Show the audit log')
    log_parser.add_argument('-n', '--lines', type=int, default=20, help='Number of recent lines to show')
    log_parser.add_argument('--files', action='store_true', help='List current and rotated log files instead')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )

    commands = {
        'init': cmd_init,
        'list': cmd_list,
        'show': cmd_show,
        'add': cmd_add,
        'edit': cmd_edit,
        'delete': cmd_delete,
        'search': cmd_search,
        'change-master': cmd_change_master,
        'backup': cmd_backup,
        'gen': cmd_gen,
        'log': cmd_log,
    }

    sys.exit(run_command(commands[args.command], args))


if __name__ == '__main__':
    main()
