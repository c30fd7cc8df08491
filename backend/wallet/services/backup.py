from __future__ import annotations

import asyncio
import json
import logging
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from pathlib import Path

from ..config import Settings
from ..errors import BackupFailed
from ..persistence import Persistence

logger = logging.getLogger(__name__)

BACKUP_FILE_PREFIX = "wallet-backup-"


class BackupService:
    def __init__(self, settings: Settings, persistence: Persistence) -> None:
        self.settings = settings
        self.persistence = persistence

    @property
    def smtp_configured(self) -> bool:
        return bool(self.settings.smtp_user and self.settings.smtp_password and self.settings.backup_recipient)

    def backup_file_path(self, ts: datetime) -> Path:
        return self.settings.backup_dir / f"{BACKUP_FILE_PREFIX}{ts.strftime('%Y%m%d_%H%M%S')}.json"

    def create_backup_file(self) -> tuple[Path, datetime]:
        ts = datetime.now(timezone.utc)
        self.settings.backup_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.backup_file_path(ts)
        payload = self.persistence.export_backup()
        file_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        return file_path, ts

    def cleanup_old_backups(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.settings.backup_retention_days)
        removed = 0
        for file_path in self.settings.backup_dir.glob(f"{BACKUP_FILE_PREFIX}*.json"):
            mtime = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
            if mtime < cutoff:
                file_path.unlink(missing_ok=True)
                removed += 1
        return removed

    def build_message(self, file_path: Path, ts: datetime) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"Daily Backup - {ts:%Y-%m-%d}"
        message["From"] = f"Smart Wallet Backup <{self.settings.smtp_user}>"
        message["To"] = self.settings.backup_recipient
        message.set_content("Attached is the daily database backup.")
        message.add_attachment(
            file_path.read_bytes(),
            maintype="application",
            subtype="json",
            filename=file_path.name,
        )
        return message

    def send(self, message: EmailMessage) -> None:
        settings = self.settings
        try:
            if settings.smtp_use_ssl:
                with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
                    smtp.login(settings.smtp_user, settings.smtp_password)
                    smtp.send_message(message)
            else:
                with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
                    smtp.starttls()
                    smtp.login(settings.smtp_user, settings.smtp_password)
                    smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send backup email to %s: %s", settings.backup_recipient, exc)
            raise BackupFailed(f"failed to send backup email: {exc}") from exc

    def run(self) -> Path:
        if not self.smtp_configured:
            raise BackupFailed("SMTP credentials missing, backup not sent")
        file_path, ts = self.create_backup_file()
        self.cleanup_old_backups()
        self.send(self.build_message(file_path, ts))
        logger.info("Backup email sent to %s (%s)", self.settings.backup_recipient, file_path.name)
        return file_path


async def backup_loop(service: BackupService, poll_seconds: float = 60) -> None:
    """Run the backup once a day at the configured hour (server local time)."""
    last_run_on = None
    while True:
        await asyncio.sleep(poll_seconds)
        now = datetime.now()
        if now.hour != service.settings.backup_hour or last_run_on == now.date():
            continue
        last_run_on = now.date()
        logger.info("Running scheduled backup")
        try:
            await asyncio.to_thread(service.run)
        except BackupFailed as exc:
            logger.warning("Scheduled backup skipped: %s", exc.message)
        except Exception:
            # Keep the loop alive; the next attempt is tomorrow.
            logger.exception("Scheduled backup failed")
