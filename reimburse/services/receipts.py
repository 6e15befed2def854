"""
Receipt reference shapes.

Canonical (all new writes):   {"fileName", "storagePath", "url"}
Legacy, read-only:            {"fileName", "driveFileId", "driveUrl"}

Legacy references exist on rows created before object storage was
introduced.  They are accepted on a write only when carried over unchanged
from the request being resubmitted.
"""

RECEIPT_PREFIX = "receipts/"


def is_legacy(ref: dict) -> bool:
    return "driveFileId" in ref and "storagePath" not in ref


def receipt_key(ref: dict) -> str:
    """Identity of a receipt reference, independent of shape."""
    if is_legacy(ref):
        return f"drive:{ref.get('driveFileId')}"
    return f"storage:{ref.get('storagePath')}"


def receipt_url(ref: dict) -> str:
    return ref.get("url") or ref.get("driveUrl") or ""


def normalize_receipt(ref: dict) -> dict:
    """Read-side view with every key present, whatever the stored shape."""
    if is_legacy(ref):
        return {
            "fileName": ref.get("fileName") or "",
            "storagePath": None,
            "url": ref.get("driveUrl") or "",
            "driveFileId": ref.get("driveFileId"),
            "legacy": True,
        }
    return {
        "fileName": ref.get("fileName") or "",
        "storagePath": ref.get("storagePath"),
        "url": ref.get("url") or "",
        "legacy": False,
    }


def clean_receipts(raw, errors: list, carried_over=(), is_owned=None) -> list[dict]:
    """Validate receipt references for a write.

    Appends one message per bad reference to ``errors``.  ``carried_over``
    lists references from the request being resubmitted; legacy-shaped refs
    are allowed only when they appear there verbatim.  Any other storage
    path must pass ``is_owned(path)``, i.e. the caller uploaded it.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors.append("Receipts must be a list")
        return []

    carried_keys = {receipt_key(r) for r in carried_over if isinstance(r, dict)}
    cleaned = []
    for idx, ref in enumerate(raw, start=1):
        if not isinstance(ref, dict):
            errors.append(f"Receipt {idx} is not a receipt reference")
            continue
        if is_legacy(ref):
            if receipt_key(ref) not in carried_keys:
                errors.append(f"Receipt {idx} uses the legacy drive format; upload it again")
                continue
            cleaned.append({
                "fileName": ref.get("fileName") or "",
                "driveFileId": ref["driveFileId"],
                "driveUrl": ref.get("driveUrl") or "",
            })
            continue
        path = ref.get("storagePath")
        if not isinstance(path, str) or not path.startswith(RECEIPT_PREFIX):
            errors.append(f"Receipt {idx} has no valid storage path")
            continue
        if (is_owned is not None and receipt_key(ref) not in carried_keys
                and not is_owned(path)):
            errors.append(f"Receipt {idx} was not uploaded by you; upload it again")
            continue
        cleaned.append({
            "fileName": str(ref.get("fileName") or path.rsplit("/", 1)[-1]),
            "storagePath": path,
            "url": str(ref.get("url") or ""),
        })
    return cleaned
