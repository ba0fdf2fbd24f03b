from raw_loader.raw_reader import RawCapture, RawReadError, read_raw
