from .supervisor import ECOSYSTEM_FILE, ProcessSupervisor, normalize_status, process_name

__all__ = ["ECOSYSTEM_FILE", "ProcessSupervisor", "normalize_status", "process_name"]
