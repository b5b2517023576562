"""Configuration for the integrative Cox ECM engine.

This module centralizes every tunable of a fit:
- ECMControl: termination controls of each CM step and of the outer ECM loop
- StartOptions: starting values (coefficients, prior censoring rates, prior
  membership probabilities, multi-start grid)
- ExecutionConfig: sequential or joblib-parallel execution of independent runs
- IntegrativeCoxConfig: master configuration with JSON save/load

All dataclasses validate themselves in ``__post_init__`` so that an invalid
configuration fails before any optimization begins.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple, Union
import os
import math
import multiprocessing
import json

import numpy as np


class InvalidConfigurationError(ValueError):
    """Raised when fit configuration is invalid for the requested data."""


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise InvalidConfigurationError(f"value of '{name}' must be a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidConfigurationError(f"value of '{name}' must be > 0, got {value}")


@dataclass
class ECMControl:
    """Termination controls for the ECM algorithm and each CM step.

    Attributes:
        gradtol: Gradient tolerance at which a CM step is considered converged
        stepmax: Maximum allowable trust-region radius of a CM step
        steptol: Minimum allowable relative step length of a CM step
        iterlim: Maximum number of iterations of a CM step
        steptol_ecm: Maximum relative squared change of the coefficients
            between ECM iterations for the loop to be considered converged
        iterlim_ecm: Maximum number of ECM iterations
        no_se: Skip the SECM variance estimation
        h: Finite-difference step for the DM matrix. Defaults to
            ``sqrt(steptol_ecm)``
        always_update_pi: Replace prior membership probabilities by the
            posterior ones after every iteration. If None, derived from the
            empirical censoring rate by ``resolve``

    Example:
        >>> control = ECMControl(no_se=False)
        >>> control.h
        0.01
        >>> control.resolve(censor_rate0=0.3).always_update_pi
        True
    """
    gradtol: float = 1e-6
    stepmax: float = 1e2
    steptol: float = 1e-6
    iterlim: int = 100
    steptol_ecm: float = 1e-4
    iterlim_ecm: int = 100
    no_se: bool = True
    h: Optional[float] = None
    always_update_pi: Optional[bool] = None

    def __post_init__(self):
        """Validate controls and fill derived defaults."""
        for name in ("gradtol", "stepmax", "steptol", "steptol_ecm"):
            _require_positive(name, getattr(self, name))
        for name in ("iterlim", "iterlim_ecm"):
            _require_positive(name, getattr(self, name))
            if int(getattr(self, name)) != getattr(self, name):
                raise InvalidConfigurationError(f"value of '{name}' must be an integer")
            setattr(self, name, int(getattr(self, name)))

        if self.h is None:
            self.h = math.sqrt(self.steptol_ecm)
        _require_positive("h", self.h)

    @property
    def pi_tolerance(self) -> float:
        """Relative-change threshold below which priors are refreshed."""
        return math.sqrt(self.steptol_ecm)

    def resolve(self, censor_rate0: float) -> "ECMControl":
        """Return a copy with ``always_update_pi`` derived when unset.

        Priors are refreshed every iteration when the empirical censoring
        rate is below 0.8, otherwise only once the coefficients settle.

        Args:
            censor_rate0: Empirical censoring rate among unambiguous subjects

        Returns:
            ECMControl with ``always_update_pi`` set to a boolean
        """
        if self.always_update_pi is not None:
            return self
        return replace(self, always_update_pi=bool(censor_rate0 < 0.8))


@dataclass
class StartOptions:
    """Starting values for the ECM search.

    Attributes:
        beta: Starting coefficients. If None, an initializer strategy is used
        censor_rate: Prior probability of a censoring record being true. A
            sequence gives one ECM run per value
        pi: Prior probability of each record being true, in input order.
            Overrides ``censor_rate`` and ``multi_start``
        multi_start: Search a grid of censoring rates from 0 to 1. Ignored when
            ``censor_rate`` or ``pi`` is given
        grid_step: Spacing of the multi-start grid

    Example:
        >>> StartOptions(censor_rate=[0.2, 0.5]).censor_rates
        (0.2, 0.5)
    """
    beta: Optional[Sequence[float]] = None
    censor_rate: Optional[Union[float, Sequence[float]]] = None
    pi: Optional[Sequence[float]] = None
    multi_start: bool = False
    grid_step: float = 0.02

    def __post_init__(self):
        """Validate ranges that do not depend on the data."""
        _require_positive("grid_step", self.grid_step)
        if self.grid_step > 1:
            raise InvalidConfigurationError("value of 'grid_step' must be <= 1")

        rates = self.censor_rates
        if rates is not None:
            if len(rates) == 0:
                raise InvalidConfigurationError("'censor_rate' must not be empty")
            arr = np.asarray(rates, dtype=float)
            if not np.all(np.isfinite(arr)) or np.any((arr < 0) | (arr > 1)):
                raise InvalidConfigurationError(
                    "Starting prob. of censoring case being true should be between 0 and 1."
                )

        if self.pi is not None:
            arr = np.asarray(self.pi, dtype=float)
            if arr.ndim != 1:
                raise InvalidConfigurationError("'pi' must be a one-dimensional vector")
            if not np.all(np.isfinite(arr)) or np.any((arr < 0) | (arr > 1)):
                raise InvalidConfigurationError("'pi' has to be between 0 and 1.")

    @property
    def censor_rates(self) -> Optional[Tuple[float, ...]]:
        """Censoring rates as a tuple, or None when not given."""
        if self.censor_rate is None:
            return None
        if np.ndim(self.censor_rate) == 0:
            return (float(self.censor_rate),)
        return tuple(float(r) for r in self.censor_rate)

    def grid(self) -> np.ndarray:
        """Multi-start grid of censoring rates from 0 to 1 inclusive."""
        n_steps = int(round(1.0 / self.grid_step))
        grid = np.arange(n_steps + 1) * self.grid_step
        grid = grid[grid <= 1.0 + 1e-12]
        if grid[-1] < 1.0 - 1e-12:
            grid = np.append(grid, 1.0)
        return np.round(np.minimum(grid, 1.0), 10)

    def validate_for(self, n_records: int, n_covariates: int) -> None:
        """Check starting values against the dimensions of the data.

        Args:
            n_records: Number of candidate records
            n_covariates: Number of covariates (columns of the design matrix)

        Raises:
            InvalidConfigurationError: If ``beta`` or ``pi`` has the wrong length
        """
        if self.beta is not None:
            beta = np.asarray(self.beta, dtype=float).ravel()
            if beta.shape[0] != n_covariates:
                raise InvalidConfigurationError(
                    "Number of starting values for coefficients of covariates "
                    f"({beta.shape[0]}) does not match the number of covariates ({n_covariates})."
                )
            if not np.all(np.isfinite(beta)):
                raise InvalidConfigurationError("Starting coefficients must be finite.")
        if self.pi is not None and len(self.pi) != n_records:
            raise InvalidConfigurationError(
                f"'pi' must have same length with number of rows of data "
                f"({len(self.pi)} != {n_records})."
            )


@dataclass
class ExecutionConfig:
    """Execution of independent ECM runs (multi-start, DM matrix rows).

    Attributes:
        n_jobs: Number of parallel jobs. -1 means use all cores, 1 means sequential
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')
        verbose: Verbosity level for joblib (0=silent, 10=progress bar, 50=detailed)

    Example:
        >>> ExecutionConfig().is_parallel()
        False
        >>> ExecutionConfig(n_jobs=4).is_parallel()
        True
    """
    n_jobs: int = 1
    backend: str = "loky"
    verbose: int = 0

    def __post_init__(self):
        """Validate and normalize configuration."""
        if self.n_jobs == -1:
            self.n_jobs = multiprocessing.cpu_count()
        elif self.n_jobs < 1:
            raise InvalidConfigurationError(f"n_jobs must be -1 or positive, got {self.n_jobs}")
        if self.backend not in ("loky", "threading", "multiprocessing"):
            raise InvalidConfigurationError(f"Unknown joblib backend: {self.backend}")

    def is_parallel(self) -> bool:
        """Check if parallel execution is enabled."""
        return self.n_jobs > 1

    def __str__(self) -> str:
        """String representation of configuration."""
        return (
            f"ExecutionConfig(n_jobs={self.n_jobs}, "
            f"backend={self.backend}, "
            f"parallel={self.is_parallel()})"
        )


@dataclass
class IntegrativeCoxConfig:
    """Master configuration for an integrative Cox fit.

    Can be serialized to/from JSON for experiment tracking.

    Attributes:
        control: ECM termination controls
        start: Starting values
        execution: Sequential or parallel execution settings
        id_column: Column holding subject identifiers
        time_column: Column holding observed times
        event_column: Column holding event indicators (1 = event, 0 = censored)
        covariates: Covariate columns. If empty, every other column is used
        dropna: Drop records with missing values in the selected columns
        description: Optional description of this configuration

    Example:
        >>> config = IntegrativeCoxConfig(control=ECMControl(no_se=False))
        >>> config.save("configs/fit.json")
        >>> loaded = IntegrativeCoxConfig.load("configs/fit.json")
    """
    control: ECMControl = field(default_factory=ECMControl)
    start: StartOptions = field(default_factory=StartOptions)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    id_column: str = "ID"
    time_column: str = "time"
    event_column: str = "event"
    covariates: Tuple[str, ...] = ()
    dropna: bool = True

    description: str = ""

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-serializable dictionary."""
        def _to_plain(obj):
            if hasattr(obj, '__dataclass_fields__'):
                return {k: _to_plain(v) for k, v in obj.__dict__.items()}
            if isinstance(obj, np.ndarray):
                return obj.tolist()
            if isinstance(obj, (list, tuple)):
                return [_to_plain(v) for v in obj]
            if isinstance(obj, np.generic):
                return obj.item()
            return obj

        return _to_plain(self)

    def save(self, path: str) -> None:
        """Save configuration to a JSON file.

        Args:
            path: Path to output JSON file
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "IntegrativeCoxConfig":
        """Load configuration from a JSON file.

        Args:
            path: Path to input JSON file

        Returns:
            IntegrativeCoxConfig instance
        """
        with open(path) as f:
            data = json.load(f)

        return cls(
            control=ECMControl(**data.get('control', {})),
            start=StartOptions(**data.get('start', {})),
            execution=ExecutionConfig(**data.get('execution', {})),
            id_column=data.get('id_column', "ID"),
            time_column=data.get('time_column', "time"),
            event_column=data.get('event_column', "event"),
            covariates=tuple(data.get('covariates', ())),
            dropna=data.get('dropna', True),
            description=data.get('description', ''),
        )
