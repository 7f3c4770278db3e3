"""
Nucleotide Substitution Models

Time-reversible models of DNA evolution used to simulate sequences and to
compute model-based transition probabilities. States are indexed in the
order A, C, G, T.

A model is defined by a rate matrix Q and equilibrium base frequencies
pi. Reversibility (pi_i Q_ij = pi_j Q_ji) makes Pi^1/2 Q Pi^-1/2
symmetric, so it is diagonalised with ``numpy.linalg.eigh`` and

    P(t) = Pi^-1/2 V exp(L t) V^T Pi^1/2

Q is normalised so that the expected substitution rate is one, which
makes branch lengths read as expected substitutions per site.

Rate heterogeneity:
- ``gamma`` is the shape of a continuous gamma distribution of rates
  across sites; ``exp(l t)`` is replaced by ``(1 - l t / gamma) ** -gamma``.
  A value <= 0 means equal rates.
- ``pinv`` is the proportion of invariable sites:
  P(t) becomes (1 - pinv) P(t) + pinv I.

Example Usage:
    >>> from splitstree.models import HKY85
    >>> model = HKY85(kappa=2.0, freqs=[0.3, 0.2, 0.2, 0.3])
    >>> P = model.transition_matrix(0.1)
    >>> round(P.sum(axis=1)[0], 6)
    1.0
"""

from typing import Optional, Sequence
import logging

import numpy as np

logger = logging.getLogger(__name__)

NUCLEOTIDES = "ACGT"

# Threshold for round-off error when checking rate matrices
EPSILON = 1e-6


class NucleotideModel:
    """
    General time-reversible nucleotide model.

    Subclasses set up their rate matrix through ``set_rate_matrix``.

    Parameters
    ----------
    pinv : float
        Proportion of invariable sites in [0, 1)
    gamma : float
        Gamma shape parameter; <= 0 for equal rates
    """

    name = "GTR"

    def __init__(self, pinv: float = 0.0, gamma: float = 0.0):
        self._freqs = np.full(4, 0.25)
        self._sqrtf = np.sqrt(self._freqs)
        self._Q = np.zeros((4, 4))
        self._evals = np.zeros(4)
        self._evecs = np.eye(4)
        self._t: Optional[float] = None
        self._P = np.eye(4)
        self.pinv = pinv
        self.gamma = gamma

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_rate_matrix(self, Q, freqs: Sequence[float]) -> None:
        """
        Install rate matrix ``Q`` (off-diagonal entries used) and base
        frequencies, then normalise to rate one.

        Raises
        ------
        ValueError
            If the frequencies are not a distribution or Q and the
            frequencies violate detailed balance
        """
        Q = np.array(Q, dtype=float)
        f = np.array(freqs, dtype=float)
        if Q.shape != (4, 4) or f.shape != (4,):
            raise ValueError("Nucleotide models need a 4x4 rate matrix and 4 frequencies")
        if np.any(f <= 0) or abs(f.sum() - 1.0) > EPSILON:
            raise ValueError(f"Base frequencies must be positive and sum to 1, got {f.tolist()}")
        for i in range(4):
            for j in range(i + 1, 4):
                if abs(f[i] * Q[i, j] - f[j] * Q[j, i]) > EPSILON:
                    raise ValueError(
                        "Rate matrix and frequencies do not satisfy detailed balance condition"
                    )

        np.fill_diagonal(Q, 0.0)
        np.fill_diagonal(Q, -Q.sum(axis=1))

        # Normalise so that the expected rate -sum_i pi_i Q_ii is one.
        rate = -float(np.dot(f, np.diag(Q)))
        if rate <= 0:
            raise ValueError("Rate matrix has no off-diagonal rates")
        Q /= rate

        self._freqs = f
        self._sqrtf = np.sqrt(f)
        self._Q = Q

        M = self._sqrtf[:, np.newaxis] * Q / self._sqrtf[np.newaxis, :]
        M = (M + M.T) / 2.0
        self._evals, self._evecs = np.linalg.eigh(M)
        self._t = None

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def pinv(self) -> float:
        return self._pinv

    @pinv.setter
    def pinv(self, value: float) -> None:
        if not 0.0 <= value < 1.0:
            raise ValueError(f"Proportion of invariable sites must be in [0, 1), got {value}")
        self._pinv = float(value)
        self._t = None

    @property
    def gamma(self) -> float:
        return self._gamma

    @gamma.setter
    def gamma(self, value: float) -> None:
        self._gamma = float(value)
        self._t = None

    @property
    def freqs(self) -> np.ndarray:
        return self._freqs.copy()

    def get_pi(self, i: int) -> float:
        return float(self._freqs[i])

    @property
    def Q(self) -> np.ndarray:
        return self._Q.copy()

    def get_q(self, i: int, j: int) -> float:
        return float(self._Q[i, j])

    @property
    def nstates(self) -> int:
        return 4

    @property
    def rate(self) -> float:
        """Expected rate over all sites, invariable ones included."""
        return 1.0 - self._pinv

    # ------------------------------------------------------------------
    # Transition probabilities
    # ------------------------------------------------------------------

    def transition_matrix(self, t: float) -> np.ndarray:
        """
        The 4x4 matrix P(t) of state change probabilities along a branch
        of length ``t``.
        """
        if self._t != t:
            self._compute_p(t)
        return self._P.copy()

    def _compute_p(self, t: float) -> None:
        if self._gamma <= 0.0:
            exp_d = np.exp(self._evals * t)
        else:
            exp_d = np.power(1.0 - self._evals * t / self._gamma, -self._gamma)
        X = (self._evecs * exp_d) @ self._evecs.T
        P = X / self._sqrtf[:, np.newaxis] * self._sqrtf[np.newaxis, :]
        if self._pinv != 0.0:
            P = (1.0 - self._pinv) * P + self._pinv * np.eye(4)
        # Round-off can push tiny entries below zero.
        P = np.clip(P, 0.0, None)
        self._P = P / P.sum(axis=1, keepdims=True)
        self._t = t

    def get_p(self, i: int, j: int, t: float) -> float:
        """Probability of ending in state j after time t, starting in i."""
        if self._t != t:
            self._compute_p(t)
        return float(self._P[i, j])

    def get_x(self, i: int, j: int, t: float) -> float:
        """Joint probability pi_i P_ij(t) of states i and j at both ends of a branch."""
        return self.get_pi(i) * self.get_p(i, j, t)

    # ------------------------------------------------------------------
    # Random states
    # ------------------------------------------------------------------

    def random_pi(self, rng) -> int:
        """Draw a state from the base frequencies."""
        return _draw(self._freqs, rng.next_double())

    def random_end_state(self, start: int, t: float, rng) -> int:
        """Draw the state at the end of a branch of length t."""
        if self._t != t:
            self._compute_p(t)
        return _draw(self._P[start], rng.next_double())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pinv={self._pinv}, gamma={self._gamma})"


def _draw(probabilities: np.ndarray, x: float) -> int:
    index = int(np.searchsorted(np.cumsum(probabilities), x, side='right'))
    return min(index, len(probabilities) - 1)


# ============================================================================
# Concrete models
# ============================================================================

class JukesCantor(NucleotideModel):
    """Jukes-Cantor (1969): equal rates and equal base frequencies."""

    name = "JC69"

    def __init__(self, pinv: float = 0.0, gamma: float = 0.0):
        super().__init__(pinv, gamma)
        self.set_rate_matrix(np.ones((4, 4)), [0.25] * 4)


class K2P(NucleotideModel):
    """Kimura two-parameter model with transition/transversion ratio kappa."""

    name = "K2P"

    def __init__(self, kappa: float = 2.0, pinv: float = 0.0, gamma: float = 0.0):
        super().__init__(pinv, gamma)
        if kappa <= 0:
            raise ValueError(f"kappa must be positive, got {kappa}")
        self.kappa = kappa
        self.set_rate_matrix(_hky_matrix(kappa, [0.25] * 4), [0.25] * 4)


class F81(NucleotideModel):
    """Felsenstein (1981): equal exchangeabilities, arbitrary base frequencies."""

    name = "F81"

    def __init__(self, freqs: Sequence[float] = (0.25, 0.25, 0.25, 0.25),
                 pinv: float = 0.0, gamma: float = 0.0):
        super().__init__(pinv, gamma)
        self.set_rate_matrix(_hky_matrix(1.0, freqs), freqs)


class HKY85(NucleotideModel):
    """Hasegawa, Kishino and Yano (1985)."""

    name = "HKY85"

    def __init__(self, kappa: float = 2.0, freqs: Sequence[float] = (0.25, 0.25, 0.25, 0.25),
                 pinv: float = 0.0, gamma: float = 0.0):
        super().__init__(pinv, gamma)
        if kappa <= 0:
            raise ValueError(f"kappa must be positive, got {kappa}")
        self.kappa = kappa
        self.set_rate_matrix(_hky_matrix(kappa, freqs), freqs)


class GTR(NucleotideModel):
    """
    General time-reversible model.

    Parameters
    ----------
    rates : Sequence[float]
        Exchangeabilities in the order AC, AG, AT, CG, CT, GT
    freqs : Sequence[float]
        Base frequencies of A, C, G, T
    """

    name = "GTR"

    def __init__(self, rates: Sequence[float] = (1, 1, 1, 1, 1, 1),
                 freqs: Sequence[float] = (0.25, 0.25, 0.25, 0.25),
                 pinv: float = 0.0, gamma: float = 0.0):
        super().__init__(pinv, gamma)
        if len(rates) != 6 or any(r < 0 for r in rates):
            raise ValueError("GTR needs six non-negative exchangeabilities")
        S = np.zeros((4, 4))
        for (i, j), r in zip([(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)], rates):
            S[i, j] = S[j, i] = r
        self.set_rate_matrix(S * np.asarray(freqs, dtype=float)[np.newaxis, :], freqs)


def _hky_matrix(kappa: float, freqs: Sequence[float]) -> np.ndarray:
    f = np.asarray(freqs, dtype=float)
    Q = np.tile(f, (4, 1))
    # A<->G and C<->T are transitions
    for i, j in ((0, 2), (2, 0), (1, 3), (3, 1)):
        Q[i, j] *= kappa
    return Q


_MODELS = {
    "jc": JukesCantor,
    "jc69": JukesCantor,
    "jukescantor": JukesCantor,
    "k2p": K2P,
    "k80": K2P,
    "f81": F81,
    "hky": HKY85,
    "hky85": HKY85,
    "gtr": GTR,
}


def get_model(name: str, **params) -> NucleotideModel:
    """
    Build a model by name (JC69, K2P, F81, HKY85, GTR; case insensitive).

    Raises
    ------
    ValueError
        If the name is unknown
    """
    key = name.lower().replace("-", "").replace("_", "")
    if key not in _MODELS:
        raise ValueError(f"Unknown substitution model: {name}. Choose from: JC69, K2P, F81, HKY85, GTR")
    model = _MODELS[key](**params)
    logger.debug(f"Created substitution model {model!r}")
    return model
