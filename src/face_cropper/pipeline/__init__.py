"""Face cropper CLI: batch-crop faces from photos and manage saved settings."""

import argparse
import logging

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff", ".gif"}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for face cropping."""
    parser = argparse.ArgumentParser(description="Detect and crop faces from photos")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # run
    run_parser = subparsers.add_parser("run", help="Detect and crop faces in a batch of images")
    run_parser.add_argument("paths", nargs="+", help="Image files or directories")
    run_parser.add_argument("--output-dir", help="Directory for crops (default: OUTPUT_DIR)")
    run_parser.add_argument("--zip", dest="zip_path", help="Write all crops to this ZIP file instead")
    run_parser.add_argument("--report", help="Write a CSV report of the batch to this path")
    run_parser.add_argument("--csv", help="CSV file mapping input files to output names")
    run_parser.add_argument("--file-column", default="0", help="CSV column with file names")
    run_parser.add_argument("--name-column", default="1", help="CSV column with output names")
    run_parser.add_argument("--retries", type=int, default=0, help="Detection retries (default: 0)")
    run_parser.add_argument(
        "--worker", action="store_true", help="Run detection on a background thread"
    )
    run_parser.add_argument(
        "--reduced-resolution", action="store_true", help="Detect on a half-size image"
    )
    run_parser.add_argument(
        "--stop-on-error", action="store_true", help="Stop the batch at the first failure"
    )
    run_parser.add_argument(
        "--memory-mode",
        choices=["manual", "auto", "aggressive"],
        default=None,
        help="When to release decoded images (default: MEMORY_MODE)",
    )
    run_parser.add_argument("--page-size", type=int, default=None, help="Images decoded up front")
    run_parser.add_argument("--no-quality", action="store_true", help="Skip sharpness scoring")
    run_parser.add_argument("--device", default=None, help="Device: cuda or cpu")
    _add_settings_arguments(run_parser)

    # detect
    detect_parser = subparsers.add_parser("detect", help="List the faces found in one image")
    detect_parser.add_argument("path", help="Image file")
    detect_parser.add_argument("--device", default=None, help="Device: cuda or cpu")

    # presets
    presets_parser = subparsers.add_parser("presets", help="Manage saved settings")
    presets_sub = presets_parser.add_subparsers(dest="presets_command")
    save_parser = presets_sub.add_parser("save", help="Save settings under a name")
    save_parser.add_argument("name", help="Configuration name")
    _add_settings_arguments(save_parser)
    presets_sub.add_parser("list", help="List saved and recently used settings")
    export_parser = presets_sub.add_parser("export", help="Export saved settings to JSON")
    export_parser.add_argument("name", help="Configuration name")
    export_parser.add_argument("output", help="Destination JSON file")
    import_parser = presets_sub.add_parser("import", help="Import settings from JSON")
    import_parser.add_argument("input", help="Source JSON file")
    import_parser.add_argument("--name", help="Save under this name instead")
    delete_parser = presets_sub.add_parser("delete", help="Delete saved settings")
    delete_parser.add_argument("name", help="Configuration name")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    _configure_logging(args.verbose)

    if args.command == "run":
        _cmd_run(args)
    elif args.command == "detect":
        _cmd_detect(args)
    elif args.command == "presets":
        if args.presets_command is None:
            presets_parser.print_help()
            return
        _cmd_presets(args)


def _add_settings_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--settings", help="JSON settings file to start from")
    parser.add_argument("--preset", help="Saved settings name to start from")
    parser.add_argument(
        "--size",
        choices=["linkedin", "passport", "instagram", "idcard", "avatar", "headshot"],
        help="Output size preset",
    )
    parser.add_argument("--width", type=int, help="Output width in pixels")
    parser.add_argument("--height", type=int, help="Output height in pixels")
    parser.add_argument("--face-height", type=int, help="Face height as %% of output height")
    parser.add_argument(
        "--mode", choices=["center", "rule-of-thirds", "custom"], help="Positioning mode"
    )
    parser.add_argument("--vertical-offset", type=int, help="Vertical offset in %% (-100..100)")
    parser.add_argument("--horizontal-offset", type=int, help="Horizontal offset in %% (-100..100)")
    parser.add_argument("--format", choices=["png", "jpeg", "webp"], help="Output format")
    parser.add_argument("--quality", type=int, help="JPEG/WebP quality (1-100)")
    parser.add_argument("--template", help="Filename template, e.g. face_{original}_{index}")


def _configure_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def _settings_from_args(args: argparse.Namespace):
    """Build Settings from a base (file or saved preset) plus command-line overrides."""
    from dataclasses import replace
    from pathlib import Path

    from face_cropper.models import PositioningMode, Settings, SettingsSnapshot

    settings = Settings()
    if args.settings:
        settings = SettingsSnapshot.from_json(Path(args.settings).read_text()).settings
    if args.preset:
        from face_cropper.db import get_connection
        from face_cropper.presets.repository import get_settings, touch_settings

        conn = get_connection()
        snapshot = get_settings(conn, args.preset)
        if snapshot is None:
            conn.close()
            raise SystemExit(f"No saved settings named {args.preset!r}")
        touch_settings(conn, args.preset)
        conn.close()
        settings = snapshot.settings

    if args.size:
        settings = settings.with_size_preset(args.size)
    if args.width is not None:
        settings = settings.with_width(args.width)
    if args.height is not None:
        settings = settings.with_height(args.height)

    overrides: dict = {}
    if args.face_height is not None:
        overrides["face_height_fraction"] = args.face_height / 100
    if args.mode:
        overrides["positioning_mode"] = PositioningMode(args.mode)
    if args.vertical_offset is not None:
        overrides["vertical_offset"] = args.vertical_offset / 100
    if args.horizontal_offset is not None:
        overrides["horizontal_offset"] = args.horizontal_offset / 100
    if args.format:
        overrides["output_format"] = args.format
    if args.quality is not None:
        overrides["quality"] = args.quality
    if args.template:
        overrides["naming_template"] = args.template
    return replace(settings, **overrides) if overrides else settings


def _collect_files(paths: list[str]) -> list:
    """Expand directories into their image files, keeping command-line order."""
    from pathlib import Path

    from face_cropper.models import FileRef

    files = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(
                FileRef.from_path(p)
                for p in sorted(path.iterdir())
                if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
            )
        elif path.is_file():
            files.append(FileRef.from_path(path))
        else:
            print(f"Skipping missing path: {path}")
    return files


def _build_detector(device: str | None):
    from face_cropper.config import DETECTOR_DEVICE
    from face_cropper.detection.insightface_detector import InsightFaceDetector

    return InsightFaceDetector(device=device or DETECTOR_DEVICE)


def _cmd_run(args: argparse.Namespace) -> None:
    """Detect and crop faces for every input file."""
    from pathlib import Path

    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

    from face_cropper.config import MEMORY_MODE, OUTPUT_DIR, PAGE_SIZE
    from face_cropper.detection.dispatcher import DetectionDispatcher
    from face_cropper.detection.worker import DetectionWorker
    from face_cropper.imaging.archive import write_archive
    from face_cropper.imaging.raster import Rasterizer
    from face_cropper.pipeline.batch import BatchProcessor
    from face_cropper.pipeline.loader import StreamingLoader
    from face_cropper.pipeline.naming import NameMapping, write_csv_report
    from face_cropper.pipeline.store import ImageRecordStore, policy_for_mode

    settings = _settings_from_args(args)
    files = _collect_files(args.paths)
    if not files:
        print("No image files found.")
        return

    name_mapping = None
    if args.csv:
        name_mapping = NameMapping.from_csv(args.csv, args.file_column, args.name_column)
        print(f"Loaded {len(name_mapping)} name mappings from {args.csv}")

    rasterizer = Rasterizer()
    store = ImageRecordStore(policy=policy_for_mode(args.memory_mode or MEMORY_MODE))
    loader = StreamingLoader(
        store,
        rasterizer=rasterizer,
        page_size=args.page_size or PAGE_SIZE,
        name_mapping=name_mapping,
    )
    intake = loader.enqueue(files)
    for rejected in intake.rejected:
        print(f"Skipped {rejected.filename}: {rejected.message}")

    print(f"Found {len(files)} images ({len(intake.immediate)} loaded, "
          f"{sum(len(batch) for batch in intake.queued)} streamed).")
    print("Loading face detector...")

    worker = None
    detector = None
    if args.worker:
        worker = DetectionWorker(lambda: _build_detector(args.device))
        worker.start()
        worker.wait_ready()
    else:
        detector = _build_detector(args.device)

    dispatcher = DetectionDispatcher(
        detector=detector,
        worker=worker,
        rasterizer=rasterizer,
        max_retries=args.retries,
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("{task.completed}/{task.total}"),
    ) as progress:
        task = progress.add_task("Cropping faces", total=None)

        def on_progress(completed: int, total: int) -> None:
            progress.update(task, completed=completed, total=total)

        processor = BatchProcessor(
            store,
            dispatcher,
            rasterizer=rasterizer,
            continue_on_error=not args.stop_on_error,
            reduced_resolution=args.reduced_resolution,
            include_quality=not args.no_quality,
            name_mapping=name_mapping,
            on_progress=on_progress,
        )
        report = processor.run(store.records(), loader.queued_files(), settings)

    if worker is not None:
        worker.stop()

    results = processor.all_results()
    if args.zip_path:
        path = write_archive(args.zip_path, [(r.filename, r.payload) for r in results])
        print(f"Wrote {len(results)} crops to {path}")
    elif results:
        output_dir = Path(args.output_dir) if args.output_dir else OUTPUT_DIR
        output_dir.mkdir(parents=True, exist_ok=True)
        for result in results:
            (output_dir / result.filename).write_bytes(result.payload)
        print(f"Wrote {len(results)} crops to {output_dir}")

    if args.report:
        write_csv_report(
            args.report, report, store.records(), processor.streamed_results.values()
        )
        print(f"Report written to {args.report}")

    print("\nDone.")
    print(f"  Images processed: {report.attempted}/{report.total}")
    print(f"  Succeeded: {report.succeeded}")
    print(f"  Failed: {report.failed}")
    print(f"  Faces found: {report.faces_found}")
    print(f"  Crops created: {report.crops_created}")
    print(f"  Elapsed: {report.elapsed_seconds:.1f}s (avg {report.average_time:.2f}s/image)")
    if report.stopped_early:
        print(f"  Stopped early: {report.unattempted} image(s) not processed")
    for error in report.errors:
        print(f"  ✗ {error.filename} [{error.kind}]: {error.message}")


def _cmd_detect(args: argparse.Namespace) -> None:
    """Print the faces detected in one image."""
    from face_cropper.detection.dispatcher import DetectionDispatcher
    from face_cropper.imaging.raster import Rasterizer
    from face_cropper.models import FileRef

    rasterizer = Rasterizer()
    ref = FileRef.from_path(args.path)
    pixels = rasterizer.decode(ref)
    dispatcher = DetectionDispatcher(detector=_build_detector(args.device), rasterizer=rasterizer)
    faces = dispatcher.detect_faces(pixels)

    height, width = pixels.shape[:2]
    print(f"{ref.name}: {width}x{height}, {len(faces)} face(s)")
    for face in faces:
        box = face.box
        print(
            f"  #{face.index} ({box.x:.0f}, {box.y:.0f}, {box.width:.0f}x{box.height:.0f}) "
            f"confidence={face.confidence:.2f} "
            f"quality={face.quality_level.value} ({face.quality_score:.0f})"
        )


def _cmd_presets(args: argparse.Namespace) -> None:
    """Save, list, export, import or delete named settings."""
    from pathlib import Path

    from face_cropper.db import get_connection
    from face_cropper.models import SettingsSnapshot
    from face_cropper.presets.repository import (
        delete_settings,
        get_settings,
        list_recent,
        list_settings,
        save_settings,
    )

    conn = get_connection()
    command = args.presets_command

    if command == "save":
        settings = _settings_from_args(args)
        save_settings(conn, SettingsSnapshot(name=args.name, settings=settings))
        print(f"Saved settings {args.name!r}.")

    elif command == "list":
        saved = list_settings(conn)
        if not saved:
            print("No saved settings.")
        for snapshot in saved:
            s = snapshot.settings
            print(
                f"  {snapshot.name}: {s.output_width}x{s.output_height} "
                f"{s.positioning_mode.value} {s.output_format} "
                f"(saved {snapshot.timestamp:%Y-%m-%d %H:%M})"
            )
        recent = list_recent(conn)
        if recent:
            print("Recent: " + ", ".join(snapshot.name for snapshot in recent))

    elif command == "export":
        snapshot = get_settings(conn, args.name)
        if snapshot is None:
            print(f"No saved settings named {args.name!r}.")
        else:
            Path(args.output).write_text(snapshot.to_json())
            print(f"Exported {args.name!r} to {args.output}")

    elif command == "import":
        snapshot = SettingsSnapshot.from_json(Path(args.input).read_text(), name=args.name)
        save_settings(conn, snapshot)
        print(f"Imported settings {snapshot.name!r}.")

    elif command == "delete":
        if delete_settings(conn, args.name):
            print(f"Deleted settings {args.name!r}.")
        else:
            print(f"No saved settings named {args.name!r}.")

    conn.close()
