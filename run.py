# run.py — Moving obstacle foreground extraction on scrolling occupancy grids
from __future__ import annotations

import argparse
from datetime import datetime
from pathlib import Path

from config_params import deep_merge, load_yaml
from pipeline.runner import run_pipeline


def main():
    ap = argparse.ArgumentParser(description="Dual-rate background subtraction on occupancy grids")
    ap.add_argument("--config", default="config.yaml", help="config yaml")
    ap.add_argument("--input", required=True, help=".npz archive or grid image dir")
    ap.add_argument("--output", default="", help="output dir (default: output/YYYYMMDD_HHMMSS)")
    ap.add_argument("--params", default="", help="params yaml, re-read whenever it changes (optional)")
    ap.add_argument("--overlay", action="store_true", help="save overlay.mp4")
    ap.add_argument("--history", type=int, default=0, help="dump history every N frames (0 = off)")
    args = ap.parse_args()

    cfg = load_yaml(args.config) if Path(args.config).exists() else {}

    # output 자동 생성
    output_dir = args.output
    if not output_dir:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = f"output/{ts}"

    # CLI override
    patch: dict = {"project": {"output_dir": output_dir}}
    if args.overlay:
        patch["project"]["save_overlay_video"] = True
    if args.history > 0:
        patch["history"] = {"enabled": True, "every_n": args.history}
    cfg = deep_merge(cfg, patch)

    # 시작 시 params 파일이 있으면 subtractor 섹션을 덮어씀
    if args.params and Path(args.params).exists():
        cfg = deep_merge(cfg, {"subtractor": load_yaml(args.params).get("subtractor", {}) or {}})

    run_pipeline(
        cfg=cfg,
        input_path=args.input,
        output_dir=output_dir,
        params_path=args.params,
    )


if __name__ == "__main__":
    main()
