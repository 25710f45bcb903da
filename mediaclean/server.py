# mediaclean/server.py
from fastapi import FastAPI, File, Form, UploadFile, HTTPException
from fastapi.responses import FileResponse
from pathlib import Path
import logging
import uuid
import zipfile
from typing import List

from mediaclean import settings
from mediaclean.batch import BatchOrchestrator
from mediaclean.cleaners.inspector import inspect_image, inspect_video
from mediaclean.codecs.ffmpeg import FFmpegVideoCodec
from mediaclean.codecs.pillow import PillowImageCodec
from mediaclean.errors import CleaningError
from mediaclean.models import CleaningConfiguration, MediaAsset, MediaKind, VideoStrategy
from mediaclean.storage import LocalStorage
from mediaclean.utils.signature import detect_extension, ext_equivalent

log = logging.getLogger(__name__)

app = FastAPI(title="mediaclean metadata remover")


@app.on_event("startup")
def bootstrap():
    settings.ensure_dirs()


def _secure_ext(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def _kind_for(ext: str) -> MediaKind:
    return MediaKind.VIDEO if ext in settings.VIDEO_EXTENSIONS else MediaKind.IMAGE


async def _validate_and_read(upload_file: UploadFile):
    ext = _secure_ext(upload_file.filename)
    if ext not in settings.ALLOWED_EXTENSIONS:
        return None, f"Extension {ext or '(none)'} not allowed."

    data = await upload_file.read()

    if len(data) > settings.MAX_FILE_SIZE:
        return None, f"File too large. Limit is {settings.MAX_FILE_SIZE} bytes."

    _verify_signature(data, upload_file.filename)
    return data, None


def _verify_signature(data: bytes, filename: str) -> None:
    claimed = _secure_ext(filename)
    detected = detect_extension(data)
    if detected is None:
        raise HTTPException(status_code=400, detail="Unsupported or unrecognized file signature.")
    if not ext_equivalent(claimed, detected):
        raise HTTPException(
            status_code=400,
            detail=f"Extension spoofing detected: file looks like {detected} but was uploaded as {claimed}."
        )


def _stash(data: bytes, filename: str, prefix: str) -> Path:
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    path = settings.UPLOAD_DIR / f"{prefix}_{uuid.uuid4().hex}{_secure_ext(filename)}"
    path.write_bytes(data)
    return path


@app.post("/clean-batch")
async def clean_batch(
    uploads: List[UploadFile] = File(...),
    video_strategy: VideoStrategy = Form(VideoStrategy.SMART_AUTO),
    heic_to_jpeg: bool = Form(False),
    bake_orientation: bool = Form(True),
    force_srgb: bool = Form(True),
    preserve_hdr: bool = Form(False),
):
    if not uploads:
        raise HTTPException(status_code=400, detail="No files uploaded.")

    config = CleaningConfiguration(
        video_strategy=video_strategy,
        heic_to_jpeg=heic_to_jpeg,
        bake_orientation=bake_orientation,
        force_srgb=force_srgb,
        preserve_hdr=preserve_hdr,
    )
    uid = uuid.uuid4().hex
    assets = []
    skipped = []
    try:
        for up in uploads:
            data, error_detail = await _validate_and_read(up)
            if error_detail:
                skipped.append({"orig": up.filename, "error": error_detail})
                continue
            src_path = _stash(data, up.filename, uid)
            ext = _secure_ext(up.filename)
            assets.append(MediaAsset(locator=src_path, kind=_kind_for(ext), size=len(data), name=up.filename))
    except HTTPException:
        for asset in assets:
            asset.locator.unlink(missing_ok=True)
        raise

    if not assets:
        raise HTTPException(status_code=400, detail="All uploaded files were invalid.")

    storage = LocalStorage(prefix=f"{uid}_")
    orchestrator = BatchOrchestrator(storage)
    try:
        outcomes = await orchestrator.run(assets, config)
    finally:
        for asset in assets:
            asset.locator.unlink(missing_ok=True)
        storage.purge_expired(extra_dirs=[settings.UPLOAD_DIR])

    results = []
    for outcome in sorted(outcomes, key=lambda o: o.index):
        if outcome.success:
            name = outcome.output_locator.name
            results.append({
                "orig": outcome.asset.name,
                "cleaned_name": name,
                "download": f"/download/{name}",
                "removed": [k.value for k in outcome.removed],
                "space_saved": outcome.space_saved,
            })
        else:
            log.error(f"Error cleaning {outcome.asset.name}: {outcome.error}")
            skipped.append({
                "orig": outcome.asset.name,
                "error": outcome.error,
                "error_kind": outcome.error_kind.value,
            })

    if not results:
        raise HTTPException(status_code=422, detail={"message": "All uploaded files failed to process.",
                                                     "failed": skipped})

    if len(results) == 1:
        item = results[0]
        return {
            "download": item["download"],
            "suggested_filename": item["cleaned_name"],
            "items": results,
            "failed": skipped,
        }

    zip_name = f"{uid}_cleaned_files.zip"
    zip_path = settings.OUTPUT_DIR / zip_name
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        for item in results:
            file_path = settings.OUTPUT_DIR / item["cleaned_name"]
            if file_path.exists():
                z.write(file_path, arcname=item["cleaned_name"])

    return {
        "zip_download": f"/download/{zip_name}",
        "items": results,
        "failed": skipped,
        "count": len(results)
    }


@app.post("/inspect")
async def inspect(upload: UploadFile = File(...)):
    data, error_detail = await _validate_and_read(upload)
    if error_detail:
        raise HTTPException(status_code=400, detail=error_detail)
    ext = _secure_ext(upload.filename)
    if _kind_for(ext) is MediaKind.IMAGE:
        try:
            findings = inspect_image(PillowImageCodec().decode(data), data)
        except CleaningError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        tmp = _stash(data, upload.filename, "inspect")
        try:
            findings = inspect_video(tmp, FFmpegVideoCodec())
        finally:
            tmp.unlink(missing_ok=True)
    return {
        "file": upload.filename,
        "findings": [
            {"kind": f.kind.value, "field_count": f.field_count, "sensitive": f.sensitive}
            for f in findings
        ],
    }


@app.get("/download/{name}")
def download(name: str):
    path = settings.OUTPUT_DIR / name
    if Path(name).name != name or not path.is_file():
        raise HTTPException(status_code=404, detail="File not found (maybe it expired and was deleted).")
    return FileResponse(path, media_type="application/octet-stream", filename=name)
