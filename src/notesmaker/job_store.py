# json file persistence for job records and generated notes
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from .exceptions import JobStoreError
from .models import NotesJob, NotesPackage

logger = logging.getLogger(__name__)

# stores one json file per job under <data_dir>/jobs and <data_dir>/notes
class JobStore:
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.jobs_dir = self.data_dir / "jobs"
        self.notes_dir = self.data_dir / "notes"

    def job_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.json"

    def notes_path(self, job_id: str) -> Path:
        return self.notes_dir / f"{job_id}.json"

    def save_job(self, job: NotesJob):
        """Write the job record, replacing any previous version"""
        self._write_json(self.job_path(job.job_id), job.model_dump(mode="json"))

    def load_job(self, job_id: str) -> Optional[NotesJob]:
        path = self.job_path(job_id)
        if not path.exists():
            return None
        return NotesJob.model_validate(self._read_json(path))

    def list_jobs(self) -> List[NotesJob]:
        if not self.jobs_dir.exists():
            return []

        jobs = []
        for path in sorted(self.jobs_dir.glob("*.json")):
            try:
                jobs.append(NotesJob.model_validate(self._read_json(path)))
            except (JobStoreError, ValueError) as e:
                # one corrupt record should not hide the others
                logger.warning(f"Skipping unreadable job record {path.name}: {e}")
        return jobs

    def delete_job(self, job_id: str):
        for path in (self.job_path(job_id), self.notes_path(job_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise JobStoreError(f"Could not delete {path}: {e}") from e

    def save_notes(self, notes_package: NotesPackage):
        self._write_json(
            self.notes_path(notes_package.job_id),
            notes_package.model_dump(mode="json", by_alias=True),
        )

    def load_notes(self, job_id: str) -> Optional[NotesPackage]:
        path = self.notes_path(job_id)
        if not path.exists():
            return None
        return NotesPackage.model_validate(self._read_json(path))

    def _write_json(self, path: Path, obj: Any):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # write to a temp file first so readers never see half a record
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError) as e:
            raise JobStoreError(f"Could not write {path}: {e}") from e

    def _read_json(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8") or "null")
        except (OSError, json.JSONDecodeError) as e:
            raise JobStoreError(f"Could not read {path}: {e}") from e
