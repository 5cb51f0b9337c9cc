"""Proving backend that drives the Noir / Barretenberg command-line tools.

    nargo execute   → solves the circuit, writes target/<name>.gz (witness)
    bb write_vk     → verification key, generated once per backend
    bb prove        → proof bytes
    bb verify       → exit status 0 on a valid proof

The circuit directory must already be compiled (``nargo compile``) so
that target/<circuit>.json exists. The backend reports the inputs that
artifact's ABI declares, not the ones a manifest claims, and refuses a
manifest (zkmind.manifest.json beside the sources, else the packaged
one) that does not describe it. All scratch files live in a private
temporary directory that close() removes.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from zkmind.crypto.commitment import PACKAGED_MANIFEST, CircuitInput, CircuitManifest
from zkmind.errors import CommitmentSchemeMismatch

logger = logging.getLogger(__name__)

CIRCUIT_MANIFEST_NAME = "zkmind.manifest.json"


class ProverCommandError(RuntimeError):
    """A prover command exited non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str) -> None:
        super().__init__(
            f"{' '.join(command)} exited {returncode}: {stderr.strip()[-500:]}"
        )
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


def to_prover_toml(inputs: dict[str, Any]) -> str:
    """Render circuit inputs in Prover.toml form.

    Scalars become quoted strings, sequences become arrays of quoted
    strings. Key order is preserved.
    """
    lines = []
    for name, value in inputs.items():
        if isinstance(value, (list, tuple)):
            rendered = "[" + ", ".join(f'"{v}"' for v in value) + "]"
        else:
            rendered = f'"{value}"'
        lines.append(f"{name} = {rendered}")
    return "\n".join(lines) + "\n"


def render_abi_type(abi_type: dict[str, Any]) -> str:
    """Render a Noir ABI type in source form, e.g. ``[u8; 4]``."""
    kind = abi_type.get("kind")
    if kind == "integer":
        prefix = "u" if abi_type.get("sign") == "unsigned" else "i"
        return f"{prefix}{abi_type['width']}"
    if kind == "array":
        return f"[{render_abi_type(abi_type['type'])}; {abi_type['length']}]"
    if kind == "field":
        return "Field"
    if kind == "boolean":
        return "bool"
    raise ValueError(f"unsupported ABI type kind: {kind!r}")


def abi_inputs(artifact: dict[str, Any]) -> tuple[CircuitInput, ...]:
    """Inputs of a compiled nargo artifact, in ABI order."""
    try:
        parameters = artifact["abi"]["parameters"]
        return tuple(
            CircuitInput(
                name=p["name"],
                type=render_abi_type(p["type"]),
                visibility=p["visibility"],
            )
            for p in parameters
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"compiled circuit has no usable abi.parameters: {e}") from e


def compiled_manifest(circuit_dir: Path, declared: CircuitManifest) -> CircuitManifest:
    """The manifest of the circuit actually compiled in ``circuit_dir``.

    Inputs come from ``target/<circuit>.json``; the commitment block, which
    the ABI cannot express, comes from ``declared``. Raises
    CommitmentSchemeMismatch when the declared inputs do not describe the
    compiled circuit, since its commitment block then describes some
    other circuit.
    """
    bytecode_path = Path(circuit_dir) / "target" / f"{declared.circuit}.json"
    with bytecode_path.open("r", encoding="utf-8") as handle:
        compiled = abi_inputs(json.load(handle))
    if compiled != declared.inputs:
        raise CommitmentSchemeMismatch(
            f"manifest for {declared.circuit} {declared.version} declares inputs "
            f"{[(i.name, i.type, i.visibility) for i in declared.inputs]}, compiled circuit has "
            f"{[(i.name, i.type, i.visibility) for i in compiled]}"
        )
    return replace(declared, inputs=compiled)


def declared_manifest(circuit_dir: Path) -> CircuitManifest:
    """The manifest kept beside the circuit sources, else the packaged one."""
    path = Path(circuit_dir) / CIRCUIT_MANIFEST_NAME
    if path.exists():
        return CircuitManifest.load(path)
    logger.info("No %s in %s; using the packaged manifest", CIRCUIT_MANIFEST_NAME, circuit_dir)
    return CircuitManifest.load(PACKAGED_MANIFEST)


class NargoBarretenbergBackend:
    """ProvingBackend over ``nargo`` and ``bb`` subprocesses."""

    def __init__(
        self,
        circuit_dir: Path,
        manifest_path: Optional[Path] = None,
        nargo: str = "nargo",
        bb: str = "bb",
        timeout: float = 300.0,
    ) -> None:
        self._circuit_dir = Path(circuit_dir)
        declared = (
            CircuitManifest.load(manifest_path) if manifest_path
            else declared_manifest(self._circuit_dir)
        )
        self._manifest = declared
        self._nargo = nargo
        self._bb = bb
        self._timeout = timeout
        self._workdir = Path(tempfile.mkdtemp(prefix="zkmind-prover-"))
        self._vk_path: Optional[Path] = None

        for tool in (nargo, bb):
            if shutil.which(tool) is None:
                self.close()
                raise FileNotFoundError(f"prover tool not found on PATH: {tool}")
        if not self.bytecode_path.exists():
            self.close()
            raise FileNotFoundError(
                f"compiled circuit missing: {self.bytecode_path} (run `nargo compile`)"
            )
        try:
            self._manifest = compiled_manifest(self._circuit_dir, declared)
        except (ValueError, OSError, CommitmentSchemeMismatch):
            self.close()
            raise

    @property
    def manifest(self) -> CircuitManifest:
        """Declared manifest with the inputs of the compiled circuit."""
        return self._manifest

    @property
    def bytecode_path(self) -> Path:
        return self._circuit_dir / "target" / f"{self._manifest.circuit}.json"

    def _run(self, command: list[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        logger.debug("Running %s", " ".join(command))
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=self._timeout,
        )
        if result.returncode != 0:
            raise ProverCommandError(command, result.returncode, result.stderr)
        return result

    @staticmethod
    def _oracle_args(mode: str) -> list[str]:
        return ["--oracle_hash", mode] if mode else []

    # ------------------------------------------------------------------
    # ProvingBackend
    # ------------------------------------------------------------------

    def execute(self, inputs: dict[str, Any]) -> bytes:
        (self._circuit_dir / "Prover.toml").write_text(to_prover_toml(inputs), encoding="utf-8")
        witness_name = "zkmind-witness"
        self._run([self._nargo, "execute", witness_name], cwd=self._circuit_dir)
        witness_path = self._circuit_dir / "target" / f"{witness_name}.gz"
        return witness_path.read_bytes()

    def _ensure_vk(self, mode: str) -> Path:
        if self._vk_path is None:
            out_dir = self._workdir / "vk"
            out_dir.mkdir(exist_ok=True)
            self._run(
                [self._bb, "write_vk", "-b", str(self.bytecode_path), "-o", str(out_dir)]
                + self._oracle_args(mode)
            )
            self._vk_path = out_dir / "vk"
        return self._vk_path

    def prove(self, witness: bytes, mode: str) -> bytes:
        witness_path = self._workdir / "witness.gz"
        witness_path.write_bytes(witness)
        out_dir = self._workdir / "proof"
        out_dir.mkdir(exist_ok=True)
        self._run(
            [
                self._bb, "prove",
                "-b", str(self.bytecode_path),
                "-w", str(witness_path),
                "-o", str(out_dir),
            ]
            + self._oracle_args(mode)
        )
        return (out_dir / "proof").read_bytes()

    def verify(self, proof: bytes, mode: str) -> bool:
        vk_path = self._ensure_vk(mode)
        proof_path = self._workdir / "verify-proof"
        proof_path.write_bytes(proof)
        try:
            self._run(
                [self._bb, "verify", "-k", str(vk_path), "-p", str(proof_path)]
                + self._oracle_args(mode)
            )
        except ProverCommandError as e:
            logger.info("bb verify rejected proof: %s", e)
            return False
        return True

    def close(self) -> None:
        shutil.rmtree(self._workdir, ignore_errors=True)
