"""
Lennard-Jones pair forces and the drift/kick kernels of the leapfrog scheme.

Pair interaction between species a and b (Lorentz-Berthelot mixing):

    sigma_ab   = (sigma_a + sigma_b) / 2
    epsilon_ab = sqrt(epsilon_a * epsilon_b)

    F(r) = 24 eps (2 (sigma/r)^12 - (sigma/r)^6) / r      (positive = repulsive)
    U(r) = 4 eps ((sigma/r)^12 - (sigma/r)^6) - U_raw(r_c)  for r < r_c

The scalar force is clamped to [-max_force, max_force] and the separation is
floored at 1e-3 sigma, so no intermediate value can overflow. The potential is
shifted to zero at the cutoff; each particle records half of every pair
potential it takes part in, so summing over particles gives each unordered
pair exactly once.

Both kernels run one logical operation per particle under ``prange``:
- drift_kernel reads and writes only the particle's own state;
- kick_kernel reads the source buffer and the rebuilt grid and writes the
  destination buffer plus per-particle (KE, PE).
"""

from typing import Tuple
import numpy as np
from numba import njit, prange

from lj_sim.md.grid import bin_coordinate, minimum_image

# Separations below this fraction of sigma are treated as this fraction
MIN_SEPARATION_FRACTION = 1.0e-3


def species_arrays(species) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-species (masses, sigmas, epsilons) as float64 arrays for the kernels."""
    masses = np.array([s.mass for s in species], dtype=np.float64)
    sigmas = np.array([s.sigma for s in species], dtype=np.float64)
    epsilons = np.array([s.epsilon for s in species], dtype=np.float64)
    return masses, sigmas, epsilons


@njit(fastmath=True)
def lennard_jones_pair(r2, sigma, epsilon, cutoff, max_force):
    """
    Capped LJ interaction for squared separation r2.

    Returns
    -------
    f_over_r : float
        Capped scalar force divided by r; multiply by the separation vector
        (r_i - r_j) to get the force on i.
    potential : float
        Cut-and-shifted pair potential.
    """
    r2_floor = (MIN_SEPARATION_FRACTION * sigma) ** 2
    if r2 < r2_floor:
        r2 = r2_floor
    r = np.sqrt(r2)

    s2 = sigma * sigma / r2
    s6 = s2 * s2 * s2
    s12 = s6 * s6

    force = 24.0 * epsilon * (2.0 * s12 - s6) / r
    if force > max_force:
        force = max_force
    elif force < -max_force:
        force = -max_force

    sc2 = sigma * sigma / (cutoff * cutoff)
    sc6 = sc2 * sc2 * sc2
    shift = 4.0 * epsilon * (sc6 * sc6 - sc6)
    potential = 4.0 * epsilon * (s12 - s6) - shift

    return force / r, potential


@njit(parallel=True, fastmath=True)
def drift_kernel(positions, velocities, last_accelerations, dt, box_size, wrap):
    """
    x += v dt + 1/2 a_last dt^2, then apply the boundary policy.

    "wrap" folds positions back into [0, box); "clamp" reflects off the walls
    (mirror the position, flip that component of the velocity and of the
    last acceleration so the next kick averages mirrored accelerations).
    """
    N = positions.shape[0]
    half_dt2 = 0.5 * dt * dt

    for i in prange(N):
        for k in range(2):
            x = positions[i, k] + velocities[i, k] * dt + last_accelerations[i, k] * half_dt2
            if wrap:
                x = x - box_size * np.floor(x / box_size)
                if x >= box_size:
                    x -= box_size
            else:
                if x < 0.0:
                    x = -x
                    velocities[i, k] = -velocities[i, k]
                    last_accelerations[i, k] = -last_accelerations[i, k]
                elif x > box_size:
                    x = 2.0 * box_size - x
                    velocities[i, k] = -velocities[i, k]
                    last_accelerations[i, k] = -last_accelerations[i, k]
                # a displacement larger than the box still has to land inside
                if x < 0.0:
                    x = 0.0
                elif x > box_size:
                    x = box_size
            positions[i, k] = x


@njit(parallel=True, fastmath=True)
def kick_kernel(positions, velocities, last_accelerations, colors, species,
                out_positions, out_velocities, out_accelerations, out_colors, out_species,
                energies, bin_load, bin_slots, bin_size, bin_count, capacity, wrap, box_size,
                masses, sigmas, epsilons, dt, cutoff, max_force, friction):
    """
    Sum pair forces over the 3x3 bin stencil and finish the velocity update.

    v += 1/2 (a_last + a_new) dt, then v *= max(0, 1 - friction dt / m).
    Writes energies[i] = (1/2 m |v|^2, 1/2 sum_j U_ij).
    """
    N = positions.shape[0]
    cutoff2 = cutoff * cutoff

    for i in prange(N):
        s_i = int(species[i])
        m_i = masses[s_i]
        pos_i_x = positions[i, 0]
        pos_i_y = positions[i, 1]
        bx = bin_coordinate(pos_i_x, bin_size, bin_count, wrap)
        by = bin_coordinate(pos_i_y, bin_size, bin_count, wrap)

        fx = 0.0
        fy = 0.0
        pe = 0.0
        for oy in range(-1, 2):
            ny = by + oy
            if wrap:
                ny = ny % bin_count
            elif ny < 0 or ny >= bin_count:
                continue
            for ox in range(-1, 2):
                nx = bx + ox
                if wrap:
                    nx = nx % bin_count
                elif nx < 0 or nx >= bin_count:
                    continue
                b = nx + ny * bin_count
                occupancy = min(bin_load[b], capacity)
                for s in range(occupancy):
                    j = bin_slots[b, s]
                    if j == i:
                        continue
                    dx = minimum_image(pos_i_x - positions[j, 0], box_size, wrap)
                    dy = minimum_image(pos_i_y - positions[j, 1], box_size, wrap)
                    r2 = dx * dx + dy * dy
                    # coincident particles have no defined direction
                    if r2 >= cutoff2 or r2 == 0.0:
                        continue
                    s_j = int(species[j])
                    sigma = 0.5 * (sigmas[s_i] + sigmas[s_j])
                    epsilon = np.sqrt(epsilons[s_i] * epsilons[s_j])
                    f_over_r, u = lennard_jones_pair(r2, sigma, epsilon, cutoff, max_force)
                    fx += f_over_r * dx
                    fy += f_over_r * dy
                    pe += 0.5 * u

        ax = fx / m_i
        ay = fy / m_i
        vx = velocities[i, 0] + 0.5 * (last_accelerations[i, 0] + ax) * dt
        vy = velocities[i, 1] + 0.5 * (last_accelerations[i, 1] + ay) * dt

        damping = 1.0 - friction * dt / m_i
        if damping < 0.0:
            damping = 0.0
        vx *= damping
        vy *= damping

        out_positions[i, 0] = pos_i_x
        out_positions[i, 1] = pos_i_y
        out_velocities[i, 0] = vx
        out_velocities[i, 1] = vy
        out_accelerations[i, 0] = ax
        out_accelerations[i, 1] = ay
        for c in range(3):
            out_colors[i, c] = colors[i, c]
        out_species[i] = species[i]

        energies[i, 0] = 0.5 * m_i * (vx * vx + vy * vy)
        energies[i, 1] = pe
