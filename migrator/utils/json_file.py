import json
import os
import tempfile


def load(filename):
    # loads the json content of a file
    # (error will be raised if file doesn't exist)

    with open(filename) as file:
        return json.load(file)


def load_or_default(filename, default):
    # like `load`, but a missing file yields `default`

    if not os.path.exists(filename):
        return default
    return load(filename)


def save(filename, content={}):
    # saves the json content to a file
    #
    # content is written to a temporary file in the same directory first and
    # then renamed over `filename`, so readers never see a half-written file

    directory = os.path.dirname(filename) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as outfile:
            json.dump(
                content,
                outfile,
                indent=2,
            )
            outfile.flush()
            os.fsync(outfile.fileno())
        os.replace(tmp_path, filename)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise

    return filename
