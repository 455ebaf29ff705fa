import yaml
from enum import Enum
from pathlib import Path
from datetime import datetime
import numpy as np
import pandas as pd


class SummaryDumper(yaml.SafeDumper):
    pass

def _seq(d, seq):
    return d.represent_sequence(yaml.resolver.BaseResolver.DEFAULT_SEQUENCE_TAG, list(seq))

def _float(d, v):
    v = float(v)
    return d.represent_none(None) if np.isnan(v) else d.represent_float(v)

def _history_representer(dumper, df: pd.DataFrame):
    # list of row mappings, NaN -> null
    rows = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    return dumper.represent_list(rows)

# stdlib
SummaryDumper.add_representer(tuple, _seq)
SummaryDumper.add_representer(Path, lambda d, v: d.represent_str(str(v)))
SummaryDumper.add_representer(datetime, lambda d, v: d.represent_str(v.isoformat()))
SummaryDumper.add_multi_representer(Enum, lambda d, v: d.represent_str(str(v.value)))

# numpy
SummaryDumper.add_multi_representer(np.integer,  lambda d, v: d.represent_int(int(v)))
SummaryDumper.add_multi_representer(np.floating, _float)
SummaryDumper.add_multi_representer(np.bool_,    lambda d, v: d.represent_bool(bool(v)))
SummaryDumper.add_multi_representer(np.ndarray,  lambda d, v: d.represent_list(v.tolist()))

# pandas
SummaryDumper.add_representer(pd.Timestamp, lambda d, v: d.represent_str(v.isoformat()))
SummaryDumper.add_representer(pd.Timedelta, lambda d, v: d.represent_str(str(v)))
SummaryDumper.add_representer(pd.Series, lambda d, v: d.represent_list(v.tolist()))
SummaryDumper.add_representer(pd.DataFrame, _history_representer)

def safe_dump_yaml(data, stream=None, **kwargs):
    """YAML dump using SummaryDumper; returns a string if stream is None."""
    params = dict(allow_unicode=True, sort_keys=False, default_flow_style=False)
    params.update(kwargs)
    if stream is None:
        return yaml.dump(data, Dumper=SummaryDumper, **params)
    yaml.dump(data, stream, Dumper=SummaryDumper, **params)
