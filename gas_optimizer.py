#!/usr/bin/env python3
# gas-optimizer
# Purpose: read current gas on several EVM chains, pick the cheapest one and write a JSON report.
# Usage:
#   pip install web3 python-dotenv pyyaml requests
#   export ENV=.env && python3 gas_optimizer.py
# Config (.env):
#   RPC_BASE=https://mainnet.base.org
#   RPC_OPTIMISM=https://mainnet.optimism.io
#   RPC_ARBITRUM=https://arb1.arbitrum.io/rpc
#   WEBHOOK_URL=https://hooks.example.com/gas   (optional)
#   REPORTS_DIR=reports                          (optional)
#   CHAINS_FILE=chains.yaml                      (optional, overrides the built-in chain list)
# Chains file format (chains.yaml):
#   - key: base
#     name: Base
#     rpc_env: RPC_BASE
import os, sys, json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
import requests
import yaml
from web3 import Web3
from dotenv import load_dotenv

FEE_HISTORY_BLOCKS = 5
FEE_HISTORY_PERCENTILE = 50

def gwei(wei) -> float: return float(Web3.from_wei(int(wei), "gwei"))

def _to_int(v) -> int:
    return int(v, 16) if isinstance(v, str) else int(v)

@dataclass(frozen=True)
class ChainCfg:
    key: str
    name: str
    rpc_env: str

CHAINS: Tuple[ChainCfg, ...] = (
    ChainCfg("base", "Base", "RPC_BASE"),
    ChainCfg("optimism", "Optimism", "RPC_OPTIMISM"),
    ChainCfg("arbitrum", "Arbitrum", "RPC_ARBITRUM"),
)

def load_chains(path: Optional[str]) -> Tuple[ChainCfg, ...]:
    if not path or not os.path.exists(path): return CHAINS
    with open(path) as f:
        data = yaml.safe_load(f) or []
    out = []
    for row in data:
        key = str(row.get("key", "")).strip()
        if not key:
            raise ValueError(f"chain entry without key in {path}: {row!r}")
        out.append(ChainCfg(
            key=key,
            name=row.get("name") or key.capitalize(),
            rpc_env=row.get("rpc_env") or f"RPC_{key.upper()}",
        ))
    return tuple(out) or CHAINS

@dataclass(frozen=True)
class Config:
    chains: Tuple[ChainCfg, ...] = CHAINS
    rpc_urls: Dict[str, str] = field(default_factory=dict)
    webhook_url: Optional[str] = None
    reports_dir: str = "reports"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        chains = load_chains(env.get("CHAINS_FILE"))
        rpc_urls = {}
        for c in chains:
            url = (env.get(c.rpc_env) or "").strip()
            if url: rpc_urls[c.key] = url
        return cls(
            chains=chains,
            rpc_urls=rpc_urls,
            webhook_url=(env.get("WEBHOOK_URL") or "").strip() or None,
            reports_dir=env.get("REPORTS_DIR") or "reports",
        )

@dataclass(frozen=True)
class GasReading:
    """Outcome of one fetch: numeric gas data, or an error message and nothing else."""
    gas_price_gwei: Optional[float] = None
    priority_fee_gwei: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "GasReading":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None and self.gas_price_gwei is not None

    @property
    def score(self) -> float:
        return self.gas_price_gwei + (self.priority_fee_gwei or 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gas_price_gwei": self.gas_price_gwei,
            "priority_fee_gwei": self.priority_fee_gwei,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "GasReading":
        return cls(d.get("gas_price_gwei"), d.get("priority_fee_gwei"), d.get("error"))

@dataclass(frozen=True)
class Report:
    timestamp: str
    best_chain: Optional[str]
    recommendation: str
    chains: Dict[str, GasReading]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "best_chain": self.best_chain,
            "recommendation": self.recommendation,
            "chains": {k: r.to_dict() for k, r in self.chains.items()},
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Report":
        return cls(
            timestamp=d["timestamp"],
            best_chain=d.get("best_chain"),
            recommendation=d["recommendation"],
            chains={k: GasReading.from_dict(v) for k, v in d.get("chains", {}).items()},
        )

def connect(rpc: str) -> Web3:
    return Web3(Web3.HTTPProvider(rpc))

def estimate_priority_fee(w3) -> Optional[float]:
    """Mean p50 reward over the last few blocks, in gwei.

    Returns None whenever the estimate can't be made: eth_feeHistory unsupported
    (common on L2 RPCs), network failure, or a reward field that isn't a list of
    non-empty lists. The caller treats None as "unknown", never as an error.
    """
    try:
        latest = int(w3.eth.block_number)
        hist = w3.eth.fee_history(FEE_HISTORY_BLOCKS, latest, [FEE_HISTORY_PERCENTILE])
        reward = hist.get("reward") if hasattr(hist, "get") else None
        if not isinstance(reward, (list, tuple)) or not reward: return None
        rewards: List[int] = [_to_int(r[0]) for r in reward if isinstance(r, (list, tuple)) and r and r[0] is not None]
        if not rewards: return None
        return gwei(sum(rewards) // len(rewards))
    except Exception:
        return None

def fetch_gas_data(w3) -> GasReading:
    try:
        price = gwei(w3.eth.gas_price)
    except Exception as e:
        return GasReading.failed(str(e) or e.__class__.__name__)
    return GasReading(gas_price_gwei=price, priority_fee_gwei=estimate_priority_fee(w3))

def choose_best_chain(readings: Mapping[str, GasReading]) -> Optional[str]:
    # strict < keeps the first chain on ties
    best, best_score = None, None
    for key, r in readings.items():
        if not r.ok: continue
        if best_score is None or r.score < best_score:
            best, best_score = key, r.score
    return best

def recommendation_text(best_chain: Optional[str], chains: Tuple[ChainCfg, ...] = CHAINS) -> str:
    if not best_chain: return "No recommendation (insufficient data)."
    name = next((c.name for c in chains if c.key == best_chain), best_chain)
    return f"Send your transactions on {name} now for lowest fees."

def build_report(timestamp: str, readings: Mapping[str, GasReading], best_chain: Optional[str],
                 chains: Tuple[ChainCfg, ...] = CHAINS) -> Report:
    return Report(
        timestamp=timestamp,
        best_chain=best_chain,
        recommendation=recommendation_text(best_chain, chains),
        chains={c.key: readings.get(c.key) or GasReading.failed("No reading collected") for c in chains},
    )

def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def report_filename(timestamp: str) -> str:
    return "report-" + timestamp.replace(":", "-").replace(".", "-") + ".json"

def write_report(report: Report, reports_dir: str) -> str:
    os.makedirs(reports_dir, exist_ok=True)
    path = os.path.join(reports_dir, report_filename(report.timestamp))
    # "x" refuses to clobber a report from another run
    with open(path, "x") as f:
        json.dump(report.to_dict(), f, indent=2)
    return path

def post_webhook(report: Report, url: str) -> bool:
    try:
        r = requests.post(url, json=report.to_dict(), headers={"Content-Type": "application/json"})
        r.raise_for_status()
    except requests.RequestException as e:
        print(f"[WARN] webhook post failed: {e}", file=sys.stderr)
        return False
    print(f"[INFO] posted to webhook {url}", file=sys.stderr)
    return True

class GasOptimizer:
    def __init__(self, config: Config, connect=connect):
        self.config = config
        self.connect = connect

    def fetch(self, rpc: str) -> GasReading:
        try:
            w3 = self.connect(rpc)
        except Exception as e:
            return GasReading.failed(f"Cannot build provider for {rpc}: {e}")
        return fetch_gas_data(w3)

    def collect(self) -> Dict[str, GasReading]:
        results: Dict[str, GasReading] = {}
        for c in self.config.chains:
            rpc = self.config.rpc_urls.get(c.key)
            if not rpc:
                results[c.key] = GasReading.failed(f"Missing env {c.rpc_env}")
                continue
            results[c.key] = self.fetch(rpc)
            if not results[c.key].ok:
                print(f"[WARN] {c.name}: {results[c.key].error}", file=sys.stderr)
        return results

    def run(self, now: Optional[datetime] = None) -> Report:
        timestamp = utc_timestamp(now)
        readings = self.collect()
        best = choose_best_chain(readings)
        report = build_report(timestamp, readings, best, self.config.chains)
        path = write_report(report, self.config.reports_dir)
        print(f"[INFO] wrote {path}", file=sys.stderr)
        if self.config.webhook_url:
            post_webhook(report, self.config.webhook_url)
        print(json.dumps(report.to_dict(), indent=2))
        return report

def main() -> int:
    load_dotenv(os.environ.get("ENV", ".env"))
    try:
        GasOptimizer(Config.from_env()).run()
    except Exception as e:
        print(f"[ERR] {e}", file=sys.stderr)
        raise
    return 0

if __name__ == "__main__":
    sys.exit(main())
