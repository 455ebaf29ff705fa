from typing import Dict, Sequence
import numpy as np
import pandas as pd


# -------------------------------------------------------------------------------
# FUNCTIONS FOR EVALUATING FORECASTS
# -------------------------------------------------------------------------------

def forecast_errors(actual, forecast) -> Dict[str, float]:
    """
    Error metrics of an aligned forecast against the actual series.

    Only positions where both `actual` and `forecast` are present (non-NaN) are
    scored, so a reconstructed forecast (NaN outside its horizon) can be passed
    as is.

    Negative ME -> the model *over-forecasts* on average
    Positive ME -> the model *under-forecasts* on average

    Returns
    -------
    dict
        {"me", "mae", "rmse", "mape", "n"}. MAPE (in %) ignores positions where
        the actual value is 0; it is NaN if none remain.
    """
    y = np.asarray(actual, dtype=np.float64).ravel()
    yhat = np.asarray(forecast, dtype=np.float64).ravel()
    if y.shape != yhat.shape:
        raise ValueError(f"actual and forecast must have the same length, got {y.shape[0]} and {yhat.shape[0]}.")

    mask = np.isfinite(y) & np.isfinite(yhat)
    if not mask.any():
        raise ValueError("No position where both actual and forecast are present.")
    err = y[mask] - yhat[mask]
    nz = y[mask] != 0
    mape = float(np.mean(np.abs(err[nz] / y[mask][nz])) * 100) if nz.any() else float("nan")
    return {
        "me": float(err.mean()),
        "mae": float(np.abs(err).mean()),
        "rmse": float(np.sqrt(np.mean(err ** 2))),
        "mape": mape,
        "n": int(mask.sum()),
    }


def errors_by_step(
    df: pd.DataFrame,
    models: Sequence[str],
    target_col: str = "y",
    step_col: str = "step",
) -> pd.DataFrame:
    """
    MAE and RMSE per horizon step.

    Parameters
    ----------
    df : pandas.DataFrame
        Long forecast table (see `predictions_to_frame`) joined with the
        ground-truth column `target_col`.
    models : Sequence[str]
        Forecast columns to score.

    Returns
    -------
    pandas.DataFrame
        Columns [step_col, "metric", *models], one row per (step, metric).
    """
    need = {step_col, target_col, *models}
    missing = need - set(df.columns)
    if missing:
        raise KeyError(f"`df` missing columns: {sorted(missing)}")

    err_block = pd.DataFrame(
        {m: df[target_col].to_numpy() - df[m].to_numpy() for m in models},
        index=df.index,
    )
    abs_err = pd.concat([df[[step_col]], err_block.abs()], axis=1)
    sq_err = pd.concat([df[[step_col]], err_block ** 2], axis=1)

    mae = abs_err.groupby(step_col, as_index=False).mean(numeric_only=True).assign(metric="mae")
    rmse = sq_err.groupby(step_col, as_index=False).mean(numeric_only=True)
    rmse[list(models)] = np.sqrt(rmse[list(models)])
    rmse = rmse.assign(metric="rmse")

    wide = (
        pd.concat([mae, rmse], ignore_index=True)
        .sort_values([step_col, "metric"], kind="mergesort")
        .reset_index(drop=True)
        [[step_col, "metric", *models]]
    )
    return wide
